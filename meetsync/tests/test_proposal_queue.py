"""Tests for ProposalQueue and SessionRegistry."""

import time

import pytest

from meetsync.common.schemas import ProposalAction, ProposalInvariantError
from meetsync.sync.proposal_queue import (
    InMemorySessionStore,
    SessionExistsError,
    SessionNotFoundError,
    SessionRegistry,
)


@pytest.fixture
def proposals(make_proposal):
    return [
        make_proposal("Draft lease agreement"),
        make_proposal("Update budget", action=ProposalAction.UPDATE),
        make_proposal("Order tiles"),
    ]


class TestCreate:
    def test_create_registers_session(self, proposals):
        registry = SessionRegistry()
        queue = registry.create("s-1", proposals, "db-1", "Weekly sync")

        assert registry.exists("s-1")
        assert queue.cursor == 0
        assert len(queue) == 3
        assert registry.current("s-1").title == "Draft lease agreement"

    def test_duplicate_session_rejected(self, proposals):
        registry = SessionRegistry()
        registry.create("s-1", proposals, "db-1")
        with pytest.raises(SessionExistsError):
            registry.create("s-1", proposals, "db-1")

    def test_empty_session_completes_immediately(self):
        registry = SessionRegistry()
        queue = registry.create("s-empty", [], "db-1")

        assert queue.is_complete
        assert queue.current() is None
        assert not registry.exists("s-empty")

    def test_invariant_checked_on_create(self, make_proposal):
        broken = make_proposal()
        broken.external_url = "https://www.notion.so/abc"
        with pytest.raises(ProposalInvariantError):
            SessionRegistry().create("s-1", [broken], "db-1")


class TestAdvance:
    def test_cursor_moves_by_one(self, proposals):
        registry = SessionRegistry()
        queue = registry.create("s-1", proposals, "db-1")

        head = registry.advance("s-1")
        assert queue.cursor == 1
        assert head.title == "Update budget"

    def test_last_advance_removes_session(self, proposals):
        registry = SessionRegistry()
        queue = registry.create("s-1", proposals, "db-1")

        registry.advance("s-1")
        registry.advance("s-1")
        assert registry.advance("s-1") is None
        assert queue.is_complete
        assert not registry.exists("s-1")
        with pytest.raises(SessionNotFoundError):
            registry.current("s-1")

    def test_unknown_session(self):
        with pytest.raises(SessionNotFoundError):
            SessionRegistry().advance("missing")


class TestReplace:
    def test_replace_bumps_iteration_keeps_cursor(self, proposals, make_proposal):
        registry = SessionRegistry()
        queue = registry.create("s-1", proposals, "db-1")
        registry.advance("s-1")

        refined = make_proposal("Update budget (revised)", action=ProposalAction.UPDATE)
        stored = registry.replace("s-1", refined)

        assert stored.iteration == 2
        assert queue.cursor == 1
        assert len(queue) == 3
        assert registry.current("s-1").title == "Update budget (revised)"

    def test_replace_counts_from_replaced_iteration(self, proposals, make_proposal):
        registry = SessionRegistry()
        registry.create("s-1", proposals, "db-1")

        registry.replace("s-1", make_proposal("v2"))
        stored = registry.replace("s-1", make_proposal("v3", iteration=1))
        assert stored.iteration == 3


class TestEviction:
    def test_idle_sessions_evicted(self, proposals):
        registry = SessionRegistry(ttl_seconds=60)
        queue = registry.create("s-old", proposals, "db-1")
        registry.create("s-new", proposals, "db-1")
        queue.last_activity = time.time() - 120

        assert registry.evict_expired() == ["s-old"]
        assert not registry.exists("s-old")
        assert registry.exists("s-new")

    def test_no_ttl_never_evicts(self, proposals):
        registry = SessionRegistry()
        registry.create("s-1", proposals, "db-1")
        assert registry.evict_expired(now=time.time() + 10 ** 9) == []

    def test_summary(self, proposals):
        registry = SessionRegistry(store=InMemorySessionStore())
        queue = registry.create("s-1", proposals, "db-1", "Weekly sync")
        summary = queue.summary()
        assert summary["total"] == 3
        assert summary["current_title"] == "Draft lease agreement"
        assert [q.session_id for q in registry.active_sessions()] == ["s-1"]
