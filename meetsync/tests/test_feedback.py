"""Tests for feedback form sessions and the field merge."""

import time
from datetime import date

import pytest
from pydantic import ValidationError

from meetsync.common.schemas import Priority, ProposalAction
from meetsync.sync.feedback import FeedbackSessionNotFoundError, FeedbackSessionStore, merge_feedback


class TestFeedbackSessionStore:
    def test_open_and_pop(self, make_proposal):
        store = FeedbackSessionStore()
        feedback = store.open("s-1", 0, make_proposal())

        assert len(store) == 1
        assert store.get(feedback.form_id) is feedback
        assert store.pop(feedback.form_id).session_id == "s-1"
        with pytest.raises(FeedbackSessionNotFoundError):
            store.pop(feedback.form_id)

    def test_form_ids_unique(self, make_proposal):
        store = FeedbackSessionStore()
        first = store.open("s-1", 0, make_proposal())
        second = store.open("s-1", 0, make_proposal())
        assert first.form_id != second.form_id

    def test_expired_forms_evicted(self, make_proposal):
        store = FeedbackSessionStore(ttl_seconds=60)
        feedback = store.open("s-1", 0, make_proposal())
        feedback.opened_at = time.time() - 61

        assert store.evict_expired() == [feedback.form_id]
        with pytest.raises(FeedbackSessionNotFoundError):
            store.get(feedback.form_id)


class TestMergeFeedback:
    def test_unedited_merge_is_identity(self, make_proposal):
        proposal = make_proposal(due_date=date(2025, 3, 7))
        values = {
            "title": proposal.title,
            "notes": proposal.notes,
            "owner": proposal.owner,
            "project": proposal.project,
            "priority": proposal.priority.value,
            "status": proposal.status,
            "start_date": None,
            "due_date": "2025-03-07",
            "focus_this_week": "No",
            "linked_reference": "TBD",
        }
        assert merge_feedback(proposal, values) == proposal

    def test_any_field_editable(self, make_proposal):
        proposal = make_proposal()
        merged = merge_feedback(proposal, {
            "title": "Draft and sign lease",
            "priority": "High",
            "due_date": "2025-05-01",
            "focus_this_week": "Yes",
        })
        assert merged.title == "Draft and sign lease"
        assert merged.priority == Priority.HIGH
        assert merged.due_date == date(2025, 5, 1)
        assert merged.owner == proposal.owner

    def test_identity_fields_not_editable(self, make_proposal):
        proposal = make_proposal(action=ProposalAction.UPDATE)
        merged = merge_feedback(proposal, {"action": "CREATE", "external_url": "New Task", "id": "zzz"})
        assert merged == proposal

    def test_explicit_none_clears_date(self, make_proposal):
        proposal = make_proposal(start_date=date(2025, 1, 1))
        assert merge_feedback(proposal, {"start_date": None}).start_date is None

    def test_invalid_value_raises(self, make_proposal):
        with pytest.raises(ValidationError):
            merge_feedback(make_proposal(), {"priority": "Urgent"})
