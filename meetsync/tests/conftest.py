"""Shared fakes and factories for MeetSync tests."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from meetsync.common.notion_client import RecordKeepingError, RecordStore, canonical_url
from meetsync.common.schemas import (
    NEW_TASK_URL,
    CandidateTask,
    Destination,
    ExistingRecord,
    Proposal,
    ProposalAction,
)
from meetsync.common.slack_client import MessagingClient, MessagingError


RECORD_ID = "1f2e3d4c5b6a79881f2e3d4c5b6a7988"


class FakeRecordStore(RecordStore):
    """
    In-memory record store.

    fail_writes makes the next N writes raise; when gate is set, every write
    records its destination in in_flight and waits for the event.
    """

    def __init__(self, destinations: Optional[List[Destination]] = None,
                 records: Optional[Dict[str, List[ExistingRecord]]] = None):
        self.destinations = destinations or []
        self.records = records or {}
        self.created: List[tuple] = []
        self.updated: List[tuple] = []
        self.fail_writes = 0
        self.gate: Optional[asyncio.Event] = None
        self.in_flight: List[str] = []

    async def _hold(self, target: str):
        if self.gate is not None:
            self.in_flight.append(target)
            await self.gate.wait()

    def _maybe_fail(self):
        if self.fail_writes:
            self.fail_writes -= 1
            raise RecordKeepingError("Notion POST /pages failed: 503")

    async def list_destinations(self) -> List[Destination]:
        return list(self.destinations)

    async def fetch_records(self, destination_id: str) -> List[ExistingRecord]:
        return list(self.records.get(destination_id, []))

    async def create_record(self, destination_id: str, proposal: Proposal) -> str:
        await self._hold(destination_id)
        self._maybe_fail()
        self.created.append((destination_id, proposal))
        return f"new-record-{len(self.created)}"

    async def update_record(self, record_id: str, proposal: Proposal) -> None:
        await self._hold(record_id)
        self._maybe_fail()
        self.updated.append((record_id, proposal))


class FakeMessenger(MessagingClient):
    """Records every message; fail_views makes open_view raise."""

    def __init__(self):
        self.posts: List[Dict[str, Any]] = []
        self.responses: List[tuple] = []
        self.views: List[tuple] = []
        self.fail_views = False

    async def post_message(self, channel, text, blocks=None):
        self.posts.append({"channel": channel, "text": text, "blocks": blocks})
        return f"ts-{len(self.posts)}"

    async def respond(self, response_url, message):
        self.responses.append((response_url, message))

    async def open_view(self, trigger_id, view):
        if self.fail_views:
            raise MessagingError("Slack views.open returned error: expired_trigger_id")
        self.views.append((trigger_id, view))


def build_proposal(title: str = "Draft lease agreement", action: ProposalAction = ProposalAction.CREATE,
                   **overrides) -> Proposal:
    fields = {
        "id": "a1b2c3d4",
        "action": action,
        "title": title,
        "notes": "Send the draft to legal by Friday.",
        "owner": "Dana",
        "project": "Island Way",
    }
    if action == ProposalAction.UPDATE:
        fields["id"] = RECORD_ID
        fields["external_url"] = canonical_url(RECORD_ID)
    else:
        fields["external_url"] = NEW_TASK_URL
    fields.update(overrides)
    return Proposal(**fields)


@pytest.fixture
def make_proposal():
    return build_proposal


@pytest.fixture
def record_id():
    return RECORD_ID


@pytest.fixture
def candidate():
    return CandidateTask(
        title="Draft lease agreement",
        notes="Send the draft to legal by Friday.",
        owner="Dana",
        priority="High",
        project="Island Way",
        linked_reference="Close tenant onboarding",
        due_date="2025-03-07",
        focus_this_week="Yes",
    )


@pytest.fixture
def existing_record():
    return ExistingRecord(
        id=RECORD_ID,
        title="Lease agreement draft",
        status="In progress",
        notes="Waiting on landlord comments.",
        canonical_url=canonical_url(RECORD_ID),
    )


@pytest.fixture
def record_store():
    return FakeRecordStore()


@pytest.fixture
def messenger():
    return FakeMessenger()
