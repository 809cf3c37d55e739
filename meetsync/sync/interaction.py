"""
Interaction State Machine

Drives one proposal session through human decisions:

    AWAITING_DECISION --accept ok--> next head (or complete)
    AWAITING_DECISION --accept err-> AWAITING_DECISION (failed card, retry)
    AWAITING_DECISION --skip-------> next head (or complete)
    AWAITING_DECISION --feedback---> AWAITING_FEEDBACK (form open, cursor kept)
    AWAITING_FEEDBACK --submit-----> AWAITING_DECISION (refined head, vN+1)

Every handler acknowledges immediately and hands the external I/O to the
BackgroundDispatcher. Background work holds the session's lock and
re-checks the cursor before writing, so a duplicate or stale click never
commits twice or commits the wrong proposal.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..common.notion_client import RecordKeepingError, RecordStore, record_id_from_url
from ..common.schemas import ActionPayload, Proposal
from ..common.slack_client import MessagingClient, MessagingError
from ..common.tracing import trace_logger
from .cards import (
    FORM_FIELDS,
    render_completion_notice,
    render_empty_notice,
    render_feedback_modal,
    render_not_found_notice,
    render_outcome_card,
    render_proposal_card,
    render_retry_card,
)
from .dispatcher import BackgroundDispatcher
from .feedback import FeedbackSession, FeedbackSessionNotFoundError, FeedbackSessionStore, merge_feedback
from .proposal_queue import ProposalQueue, SessionNotFoundError, SessionRegistry

logger = logging.getLogger("meetsync.sync.interaction")

_FIELD_BLOCKS = {name: block_id for block_id, _, name in FORM_FIELDS}


class ActionKind(str, Enum):
    """Button action ids on a proposal card"""
    ACCEPT = "accept_task"
    SKIP = "skip_task"
    FEEDBACK = "feedback_task"


@dataclass
class ActionEvent:
    """A decoded button click"""
    kind: ActionKind
    payload: ActionPayload
    response_url: str = ""
    trigger_id: str = ""
    user: str = ""

    @property
    def session_id(self) -> str:
        return self.payload.session_id


@dataclass
class FeedbackSubmission:
    """A submitted feedback form"""
    form_id: str
    values: Dict[str, Any] = field(default_factory=dict)
    user: str = ""


@dataclass
class Acknowledgement:
    """
    What the HTTP layer answers right away.

    status: accepted | skipped | feedback_opened | refining | stale |
            not_found | invalid
    body: JSON body for the response (None means an empty 200)
    """
    status: str
    body: Optional[Dict[str, Any]] = None


def _form_errors(error: ValidationError) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for item in error.errors():
        loc = item.get("loc") or ()
        name = loc[0] if loc else ""
        block_id = _FIELD_BLOCKS.get(name, "title_block")
        errors.setdefault(block_id, item.get("msg", "Invalid value"))
    return errors


class InteractionStateMachine:
    """Accept / Skip / Feedback handling for proposal sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        feedback_store: FeedbackSessionStore,
        record_store: RecordStore,
        messenger: MessagingClient,
        dispatcher: BackgroundDispatcher,
        channel: str,
    ):
        self._registry = registry
        self._feedback = feedback_store
        self._records = record_store
        self._messenger = messenger
        self._dispatcher = dispatcher
        self._channel = channel

    # ------------------------------------------------------------------
    # Rendering helpers (messaging failures never change session state)
    # ------------------------------------------------------------------

    async def _post(self, session_id: Optional[str], message: Dict[str, Any]) -> Optional[str]:
        try:
            return await self._messenger.post_message(self._channel, message["text"], message.get("blocks"))
        except MessagingError as e:
            trace_logger(logger, session_id).error("Failed to post message: %s", e)
            return None

    async def _respond(self, session_id: Optional[str], response_url: str, message: Dict[str, Any]) -> None:
        if not response_url:
            await self._post(session_id, message)
            return
        try:
            await self._messenger.respond(response_url, message)
        except MessagingError as e:
            trace_logger(logger, session_id).error("Failed to update card: %s", e)

    async def _show_head(self, queue: ProposalQueue, head: Optional[Proposal]) -> None:
        if head is None:
            await self._post(queue.session_id, render_completion_notice(
                queue.session_id, len(queue), queue.meeting_title,
            ))
            return
        await self._post(queue.session_id, render_proposal_card(
            head, queue.session_id, queue.cursor, len(queue), queue.meeting_title,
        ))

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------

    async def start_session(self, queue: ProposalQueue) -> Optional[str]:
        """Render the first proposal, or the "nothing to review" notice."""
        log = trace_logger(logger, queue.session_id)
        if queue.is_complete:
            log.info("No tasks identified, posting empty notice")
            return await self._post(queue.session_id, render_empty_notice(queue.session_id, queue.meeting_title))

        log.info("Posting proposal 1 of %d", len(queue))
        return await self._post(queue.session_id, render_proposal_card(
            queue.current(), queue.session_id, queue.cursor, len(queue), queue.meeting_title,
        ))

    # ------------------------------------------------------------------
    # Button clicks
    # ------------------------------------------------------------------

    async def handle_action(self, event: ActionEvent) -> Acknowledgement:
        """Acknowledge a button click and schedule its effect."""
        session_id = event.session_id
        log = trace_logger(logger, session_id)

        try:
            queue = self._registry.get(session_id)
        except SessionNotFoundError:
            log.warning("Action %s for unknown session", event.kind.value)
            self._dispatcher.submit(
                self._respond(session_id, event.response_url, render_not_found_notice(session_id)),
                session_id=session_id, label="not-found notice",
            )
            return Acknowledgement("not_found")

        if event.payload.queue_index != queue.cursor:
            log.info(
                "Ignoring stale %s for proposal %d (cursor at %d)",
                event.kind.value, event.payload.queue_index + 1, queue.cursor + 1,
            )
            return Acknowledgement("stale")

        queue.touch()
        index = event.payload.queue_index

        if event.kind == ActionKind.ACCEPT:
            self._dispatcher.submit(
                self._commit(queue, index, event.response_url), session_id=session_id, label="commit",
            )
            return Acknowledgement("accepted")

        if event.kind == ActionKind.SKIP:
            self._dispatcher.submit(
                self._skip(queue, index, event.response_url), session_id=session_id, label="skip",
            )
            return Acknowledgement("skipped")

        feedback = self._feedback.open(session_id, index, queue.current())
        self._dispatcher.submit(
            self._open_form(feedback, event.trigger_id), session_id=session_id, label="open feedback form",
        )
        return Acknowledgement("feedback_opened")

    async def _commit(self, queue: ProposalQueue, index: int, response_url: str) -> None:
        session_id = queue.session_id
        log = trace_logger(logger, session_id)

        async with queue.lock:
            if not self._registry.exists(session_id) or queue.cursor != index:
                log.info("Accept for proposal %d already handled, ignoring", index + 1)
                return

            proposal = queue.current()
            proposal.check_invariant()
            try:
                if proposal.is_create:
                    record_id = await self._records.create_record(queue.destination_store, proposal)
                    outcome = "created"
                else:
                    record_id = record_id_from_url(proposal.external_url) or proposal.id
                    await self._records.update_record(record_id, proposal)
                    outcome = "updated"
            except RecordKeepingError as e:
                log.error("Write failed for proposal %d (%s): %s", index + 1, proposal.title, e)
                await self._respond(session_id, response_url, render_retry_card(
                    proposal, session_id, index, len(queue), str(e), queue.meeting_title,
                ))
                return

            log.info("Proposal %d %s as record %s", index + 1, outcome, record_id)
            head = self._registry.advance(session_id)
            await self._respond(session_id, response_url, render_outcome_card(outcome, proposal))
            await self._show_head(queue, head)

    async def _skip(self, queue: ProposalQueue, index: int, response_url: str) -> None:
        session_id = queue.session_id
        log = trace_logger(logger, session_id)

        async with queue.lock:
            if not self._registry.exists(session_id) or queue.cursor != index:
                log.info("Skip for proposal %d already handled, ignoring", index + 1)
                return

            proposal = queue.current()
            log.info("Proposal %d skipped: %s", index + 1, proposal.title)
            head = self._registry.advance(session_id)
            await self._respond(session_id, response_url, render_outcome_card("skipped", proposal))
            await self._show_head(queue, head)

    async def _open_form(self, feedback: FeedbackSession, trigger_id: str) -> None:
        try:
            await self._messenger.open_view(trigger_id, render_feedback_modal(feedback.proposal, feedback.form_id))
        except MessagingError as e:
            trace_logger(logger, feedback.session_id).error("Failed to open feedback form: %s", e)
            self._feedback.discard(feedback.form_id)

    # ------------------------------------------------------------------
    # Feedback form submission
    # ------------------------------------------------------------------

    async def handle_feedback_submission(self, submission: FeedbackSubmission) -> Acknowledgement:
        """Validate a submitted form, close it, and schedule the refinement."""
        try:
            feedback = self._feedback.get(submission.form_id)
        except FeedbackSessionNotFoundError:
            logger.warning("Feedback submitted for unknown form %s", submission.form_id)
            self._dispatcher.submit(
                self._post(None, render_not_found_notice()), label="not-found notice",
            )
            return Acknowledgement("not_found", {"response_action": "clear"})

        log = trace_logger(logger, feedback.session_id)
        try:
            merge_feedback(feedback.proposal, submission.values)
        except ValidationError as e:
            log.info("Feedback form %s rejected: %d invalid field(s)", feedback.form_id, e.error_count())
            return Acknowledgement("invalid", {"response_action": "errors", "errors": _form_errors(e)})

        self._feedback.discard(feedback.form_id)
        self._dispatcher.submit(
            self._refine(feedback, submission.values), session_id=feedback.session_id, label="refine",
        )
        return Acknowledgement("refining")

    async def _refine(self, feedback: FeedbackSession, values: Dict[str, Any]) -> None:
        session_id = feedback.session_id
        log = trace_logger(logger, session_id)

        try:
            queue = self._registry.get(session_id)
        except SessionNotFoundError:
            log.warning("Session ended before feedback was applied")
            await self._post(session_id, render_not_found_notice(session_id))
            return

        async with queue.lock:
            if not self._registry.exists(session_id) or queue.cursor != feedback.queue_index:
                log.info("Feedback for proposal %d no longer current, ignoring", feedback.queue_index + 1)
                return

            refined = merge_feedback(queue.current(), values)
            stored = self._registry.replace(session_id, refined)
            await self._show_head(queue, stored)
