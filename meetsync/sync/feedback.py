"""
Feedback Sessions

A FeedbackSession lives while a human edits a proposal in the feedback form.
It is keyed by a one-time form id carried in the form's hidden metadata and
is destroyed on submit, or after the editing surface's timeout.
"""

import uuid
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.schemas import Proposal
from ..common.tracing import trace_logger

logger = logging.getLogger("meetsync.sync.feedback")

# Fields a human may edit; action, id and external_url are never editable.
EDITABLE_FIELDS = (
    "title",
    "notes",
    "owner",
    "project",
    "priority",
    "status",
    "start_date",
    "due_date",
    "focus_this_week",
    "linked_reference",
)


class FeedbackSessionNotFoundError(Exception):
    """The form session was already submitted, expired, or lost on restart."""
    pass


@dataclass
class FeedbackSession:
    """One open feedback form"""
    form_id: str
    session_id: str
    queue_index: int
    proposal: Proposal
    opened_at: float = field(default_factory=time.time)

    @property
    def iteration(self) -> int:
        return self.proposal.iteration


class FeedbackSessionStore:
    """In-memory store of open feedback forms."""

    def __init__(self, ttl_seconds: Optional[float] = None):
        self._sessions: Dict[str, FeedbackSession] = {}
        self._ttl_seconds = ttl_seconds

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self, session_id: str, queue_index: int, proposal: Proposal) -> FeedbackSession:
        """Start a form session for the proposal currently at queue_index."""
        feedback = FeedbackSession(
            form_id=str(uuid.uuid4()),
            session_id=session_id,
            queue_index=queue_index,
            proposal=proposal,
        )
        self._sessions[feedback.form_id] = feedback
        trace_logger(logger, session_id).info(
            "Feedback form %s opened for proposal %d (v%d)", feedback.form_id, queue_index + 1, feedback.iteration
        )
        return feedback

    def get(self, form_id: str) -> FeedbackSession:
        feedback = self._sessions.get(form_id)
        if feedback is None:
            raise FeedbackSessionNotFoundError(f"Feedback session not found: {form_id}")
        return feedback

    def pop(self, form_id: str) -> FeedbackSession:
        """Remove and return a form session (raises FeedbackSessionNotFoundError)."""
        feedback = self._sessions.pop(form_id, None)
        if feedback is None:
            raise FeedbackSessionNotFoundError(f"Feedback session not found: {form_id}")
        return feedback

    def discard(self, form_id: str) -> None:
        self._sessions.pop(form_id, None)

    def evict_expired(self, now: Optional[float] = None) -> List[str]:
        if not self._ttl_seconds:
            return []
        now = time.time() if now is None else now
        expired = [fid for fid, fs in self._sessions.items() if now - fs.opened_at > self._ttl_seconds]
        for fid in expired:
            del self._sessions[fid]
        if expired:
            logger.info("Evicted %d expired feedback form(s)", len(expired))
        return expired


def merge_feedback(proposal: Proposal, values: Dict[str, Any]) -> Proposal:
    """
    Merge submitted form values over a proposal.

    Every editable field is replaceable. Keys that are absent keep their
    current value; an explicit None clears an optional date. Identity fields
    (id, action, external_url) and iteration are untouched here.

    Raises:
        pydantic.ValidationError: if a submitted value is invalid
    """
    data = proposal.model_dump()
    for name in EDITABLE_FIELDS:
        if name in values:
            data[name] = values[name]
    return Proposal.model_validate(data)
