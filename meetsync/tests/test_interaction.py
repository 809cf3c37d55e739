"""
Interaction State Machine Scenario Tests

Walks proposal sessions through Accept / Skip / Feedback with a fake record
store and a fake Slack client. Background work is flushed with
``dispatcher.drain()`` after each acknowledgement.
"""

import asyncio
import json
from types import SimpleNamespace

import pytest

from meetsync.common.schemas import NEW_TASK_URL, ActionPayload, ProposalAction
from meetsync.sync.cards import parse_feedback_form
from meetsync.sync.dispatcher import BackgroundDispatcher
from meetsync.sync.feedback import FeedbackSessionStore
from meetsync.sync.interaction import (
    ActionEvent,
    ActionKind,
    FeedbackSubmission,
    InteractionStateMachine,
)
from meetsync.sync.proposal_queue import SessionRegistry

RESPONSE_URL = "https://hooks.slack.com/actions/T1/1/abc"


@pytest.fixture
def harness(record_store, messenger):
    registry = SessionRegistry()
    feedback = FeedbackSessionStore()
    dispatcher = BackgroundDispatcher(max_concurrency=4)
    machine = InteractionStateMachine(
        registry=registry,
        feedback_store=feedback,
        record_store=record_store,
        messenger=messenger,
        dispatcher=dispatcher,
        channel="C-APPROVALS",
    )
    return SimpleNamespace(
        registry=registry,
        feedback=feedback,
        dispatcher=dispatcher,
        machine=machine,
        records=record_store,
        slack=messenger,
    )


@pytest.fixture
def three(make_proposal):
    return [
        make_proposal("Draft lease agreement", id="aaaa1111"),
        make_proposal("Update budget", action=ProposalAction.UPDATE),
        make_proposal("Order tiles", id="cccc3333"),
    ]


def click(h, kind, index, session_id="s-1", proposal=None):
    """A button click carrying a copy of the proposal shown on the card."""
    if proposal is None:
        proposal = h.registry.get(session_id).proposals[index]
    return ActionEvent(
        kind=kind,
        payload=ActionPayload(session_id=session_id, queue_index=index, proposal=proposal.model_copy()),
        response_url=RESPONSE_URL,
        trigger_id="trigger-1",
        user="U1",
    )


def last_post(h):
    return h.slack.posts[-1]["text"]


async def settle(h, writes):
    """Let dispatched work run until `writes` record writes are held at the gate."""
    for _ in range(100):
        if len(h.records.in_flight) >= writes:
            break
        await asyncio.sleep(0)
    # give queued clicks a chance to reach the session lock
    for _ in range(10):
        await asyncio.sleep(0)


class TestStartSession:
    @pytest.mark.asyncio
    async def test_first_card_posted(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1", "Weekly sync")
        await harness.machine.start_session(queue)

        assert len(harness.slack.posts) == 1
        assert harness.slack.posts[0]["channel"] == "C-APPROVALS"
        assert "Proposal 1 of 3" in last_post(harness)

    @pytest.mark.asyncio
    async def test_empty_session_posts_notice_only(self, harness):
        queue = harness.registry.create("s-empty", [], "db-1")
        await harness.machine.start_session(queue)

        assert len(harness.slack.posts) == 1
        assert "No tasks identified" in last_post(harness)
        blocks = json.dumps(harness.slack.posts[0]["blocks"])
        assert "accept_task" not in blocks


class TestAcceptSkipAccept:
    @pytest.mark.asyncio
    async def test_three_proposal_walkthrough(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        await harness.machine.start_session(queue)

        ack = await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        assert ack.status == "accepted"
        await harness.dispatcher.drain()
        assert queue.cursor == 1
        assert "Proposal 2 of 3" in last_post(harness)
        assert "Created" in harness.slack.responses[-1][1]["text"]

        ack = await harness.machine.handle_action(click(harness, ActionKind.SKIP, 1))
        assert ack.status == "skipped"
        await harness.dispatcher.drain()
        assert queue.cursor == 2
        assert "Skipped" in harness.slack.responses[-1][1]["text"]

        ack = await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 2))
        await harness.dispatcher.drain()

        assert [p.title for _, p in harness.records.created] == ["Draft lease agreement", "Order tiles"]
        assert harness.records.updated == []
        assert not harness.registry.exists("s-1")
        assert "All 3 proposal(s) reviewed" in last_post(harness)

    @pytest.mark.asyncio
    async def test_creates_carry_sentinel_updates_do_not(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        for index in range(3):
            await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, index))
            await harness.dispatcher.drain()

        assert all(p.external_url == NEW_TASK_URL for _, p in harness.records.created)
        assert all(p.external_url != NEW_TASK_URL for _, p in harness.records.updated)
        assert queue.is_complete

    @pytest.mark.asyncio
    async def test_update_targets_record_from_url(self, harness, make_proposal, record_id):
        harness.registry.create("s-1", [make_proposal(action=ProposalAction.UPDATE, id="other-id")], "db-1")
        await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        await harness.dispatcher.drain()

        written_id, proposal = harness.records.updated[0]
        assert written_id == record_id
        assert "Updated" in harness.slack.responses[-1][1]["text"]

    @pytest.mark.asyncio
    async def test_queue_proposal_is_authoritative(self, harness, three):
        harness.registry.create("s-1", three, "db-1")
        event = click(harness, ActionKind.ACCEPT, 0)
        event.payload.proposal.notes = "truncated..."
        assert three[0].notes != "truncated..."

        await harness.machine.handle_action(event)
        await harness.dispatcher.drain()
        assert harness.records.created[0][1].notes == three[0].notes


class TestFailuresAndRetry:
    @pytest.mark.asyncio
    async def test_failed_write_then_retry(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        harness.records.fail_writes = 1

        await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        await harness.dispatcher.drain()

        assert queue.cursor == 0
        assert harness.records.created == []
        failed = harness.slack.responses[-1][1]
        assert "Failed to save" in failed["text"]
        assert "accept_task" in json.dumps(failed["blocks"])

        ack = await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        assert ack.status == "accepted"
        await harness.dispatcher.drain()

        assert queue.cursor == 1
        assert len(harness.records.created) == 1

    @pytest.mark.asyncio
    async def test_duplicate_click_commits_once(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")

        first = await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        second = await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        await harness.dispatcher.drain()

        assert first.status == "accepted"
        assert second.status == "accepted"
        assert len(harness.records.created) == 1
        assert queue.cursor == 1

    @pytest.mark.asyncio
    async def test_clicks_during_slow_write_are_serialized(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        harness.records.gate = asyncio.Event()

        for kind in (ActionKind.ACCEPT, ActionKind.ACCEPT, ActionKind.SKIP):
            ack = await harness.machine.handle_action(click(harness, kind, 0))
            assert ack.status in ("accepted", "skipped")
        await settle(harness, writes=1)

        assert harness.records.in_flight == ["db-1"]
        assert queue.cursor == 0

        harness.records.gate.set()
        await harness.dispatcher.drain()

        assert len(harness.records.created) == 1
        assert queue.cursor == 1
        assert harness.registry.current("s-1").title == "Update budget"
        assert "Skipped" not in json.dumps([r[1] for r in harness.slack.responses])

    @pytest.mark.asyncio
    async def test_sessions_do_not_block_each_other(self, harness, three, make_proposal):
        first = harness.registry.create("s-1", three, "db-1")
        second = harness.registry.create("s-2", [make_proposal("Book plumber", id="dddd4444")], "db-2")
        harness.records.gate = asyncio.Event()

        await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0, session_id="s-2"))
        await settle(harness, writes=2)

        assert sorted(harness.records.in_flight) == ["db-1", "db-2"]

        harness.records.gate.set()
        await harness.dispatcher.drain()

        assert sorted(dest for dest, _ in harness.records.created) == ["db-1", "db-2"]
        assert first.cursor == 1
        assert second.cursor == 1

    @pytest.mark.asyncio
    async def test_stale_click_ignored(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        stale = click(harness, ActionKind.ACCEPT, 0)

        await harness.machine.handle_action(click(harness, ActionKind.SKIP, 0))
        await harness.dispatcher.drain()
        responses = len(harness.slack.responses)

        ack = await harness.machine.handle_action(stale)
        await harness.dispatcher.drain()

        assert ack.status == "stale"
        assert harness.records.created == []
        assert queue.cursor == 1
        assert len(harness.slack.responses) == responses

    @pytest.mark.asyncio
    async def test_click_on_finished_session(self, harness, make_proposal):
        event = click(harness, ActionKind.ACCEPT, 0, session_id="gone", proposal=make_proposal())
        ack = await harness.machine.handle_action(event)
        await harness.dispatcher.drain()

        assert ack.status == "not_found"
        url, message = harness.slack.responses[-1]
        assert url == RESPONSE_URL
        assert "Nothing to act on" in message["text"]
        assert harness.records.created == []


class TestFeedbackLoop:
    @pytest.mark.asyncio
    async def test_open_form_keeps_cursor(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")

        ack = await harness.machine.handle_action(click(harness, ActionKind.FEEDBACK, 0))
        await harness.dispatcher.drain()

        assert ack.status == "feedback_opened"
        assert queue.cursor == 0
        assert len(harness.feedback) == 1
        trigger_id, view = harness.slack.views[0]
        assert trigger_id == "trigger-1"
        assert view["callback_id"] == "feedback_modal_submit"

    @pytest.mark.asyncio
    async def test_unedited_submit_bumps_iteration_only(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        await harness.machine.handle_action(click(harness, ActionKind.FEEDBACK, 0))
        await harness.dispatcher.drain()
        _, view = harness.slack.views[0]
        form_id = json.loads(view["private_metadata"])["form_id"]

        values = {}
        for block in view["blocks"]:
            if block["type"] != "input":
                continue
            element = block["element"]
            if element["type"] == "static_select":
                state = {"type": "static_select", "selected_option": element.get("initial_option")}
            elif element["type"] == "datepicker":
                state = {"type": "datepicker", "selected_date": element.get("initial_date")}
            else:
                state = {"type": "plain_text_input", "value": element.get("initial_value")}
            values[block["block_id"]] = {element["action_id"]: state}

        ack = await harness.machine.handle_feedback_submission(
            FeedbackSubmission(form_id=form_id, values=parse_feedback_form(values))
        )
        await harness.dispatcher.drain()

        assert ack.status == "refining"
        assert ack.body is None
        head = queue.current()
        assert head.iteration == 2
        assert head.model_copy(update={"iteration": 1}) == three[0]
        assert queue.cursor == 0
        assert len(harness.feedback) == 0
        assert "Refined Proposal (v2)" in json.dumps(harness.slack.posts[-1]["blocks"])

    @pytest.mark.asyncio
    async def test_edited_submit_then_accept(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        await harness.machine.handle_action(click(harness, ActionKind.FEEDBACK, 0))
        form_id = next(iter(harness.feedback._sessions))

        await harness.machine.handle_feedback_submission(
            FeedbackSubmission(form_id=form_id, values={"owner": "Lee", "priority": "High"})
        )
        await harness.dispatcher.drain()

        await harness.machine.handle_action(click(harness, ActionKind.ACCEPT, 0))
        await harness.dispatcher.drain()

        _, written = harness.records.created[0]
        assert written.owner == "Lee"
        assert written.priority.value == "High"
        assert written.iteration == 2
        assert queue.cursor == 1

    @pytest.mark.asyncio
    async def test_invalid_submit_returns_field_errors(self, harness, three):
        harness.registry.create("s-1", three, "db-1")
        await harness.machine.handle_action(click(harness, ActionKind.FEEDBACK, 0))
        form_id = next(iter(harness.feedback._sessions))

        ack = await harness.machine.handle_feedback_submission(
            FeedbackSubmission(form_id=form_id, values={"due_date": "next friday"})
        )

        assert ack.status == "invalid"
        assert ack.body["response_action"] == "errors"
        assert "due_date_block" in ack.body["errors"]
        assert len(harness.feedback) == 1

    @pytest.mark.asyncio
    async def test_unknown_form(self, harness):
        ack = await harness.machine.handle_feedback_submission(FeedbackSubmission(form_id="nope"))
        await harness.dispatcher.drain()

        assert ack.status == "not_found"
        assert ack.body == {"response_action": "clear"}
        assert "Nothing to act on" in last_post(harness)

    @pytest.mark.asyncio
    async def test_submit_after_cursor_moved_is_ignored(self, harness, three):
        queue = harness.registry.create("s-1", three, "db-1")
        await harness.machine.handle_action(click(harness, ActionKind.FEEDBACK, 0))
        form_id = next(iter(harness.feedback._sessions))

        await harness.machine.handle_action(click(harness, ActionKind.SKIP, 0))
        await harness.dispatcher.drain()
        await harness.machine.handle_feedback_submission(
            FeedbackSubmission(form_id=form_id, values={"title": "Late edit"})
        )
        await harness.dispatcher.drain()

        assert queue.cursor == 1
        assert queue.current().title == "Update budget"
        assert queue.proposals[0].iteration == 1

    @pytest.mark.asyncio
    async def test_failed_form_open_discards_session(self, harness, three):
        harness.registry.create("s-1", three, "db-1")
        harness.slack.fail_views = True

        await harness.machine.handle_action(click(harness, ActionKind.FEEDBACK, 0))
        await harness.dispatcher.drain()

        assert len(harness.feedback) == 0
