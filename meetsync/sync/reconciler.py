"""
Reconciler

Classifies each extracted candidate as CREATE or UPDATE against the records
already in the destination store.

The create-vs-update judgment is delegated to a SemanticComparator, but its
answer is never trusted blindly:
1. UPDATE must name an existing record by its exact canonical url
2. CREATE must carry the "New Task" sentinel
3. owner, priority, linked reference, dates and focus must equal the
   candidate's values verbatim

A violation drops that one candidate; the others are still reconciled.
"""

import secrets
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..common.schemas import (
    NEW_TASK_URL,
    CandidateTask,
    ComparatorResponse,
    ExistingRecord,
    Proposal,
    ProposalAction,
)
from ..common.tracing import trace_logger
from .comparator import ComparatorError, SemanticComparator

logger = logging.getLogger("meetsync.sync.reconciler")

PRESERVED_FIELDS = (
    "owner",
    "priority",
    "linked_reference",
    "start_date",
    "due_date",
    "focus_this_week",
)

_DATE_FIELDS = ("start_date", "due_date")


class ReconciliationError(Exception):
    """A comparator answer violated the reconciliation contract."""

    def __init__(self, candidate_title: str, reason: str):
        super().__init__(f"{candidate_title!r}: {reason}")
        self.candidate_title = candidate_title
        self.reason = reason


@dataclass
class ReconciliationFailure:
    """A candidate that was dropped, and why"""
    candidate: CandidateTask
    reason: str


@dataclass
class ReconciliationResult:
    """Reconciled proposals in candidate order, plus dropped candidates"""
    proposals: List[Proposal] = field(default_factory=list)
    failures: List[ReconciliationFailure] = field(default_factory=list)

    @property
    def creates(self) -> int:
        return sum(1 for p in self.proposals if p.action == ProposalAction.CREATE)

    @property
    def updates(self) -> int:
        return sum(1 for p in self.proposals if p.action == ProposalAction.UPDATE)


def new_temp_id() -> str:
    """Temporary id for a CREATE proposal (8 hex chars)."""
    return secrets.token_hex(4)


def _normalize_answer(raw: Dict[str, Any]) -> Dict[str, Any]:
    answer = dict(raw)
    if isinstance(answer.get("action"), str):
        answer["action"] = answer["action"].strip().upper()
    for key in _DATE_FIELDS:
        value = answer.get(key)
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            answer[key] = None
    for key in ("external_url", "status", "title", "notes", "project"):
        if answer.get(key) is None:
            answer[key] = ""
    return answer


class Reconciler:
    """Validates comparator answers and turns candidates into Proposals."""

    def __init__(self, comparator: SemanticComparator):
        self._comparator = comparator

    def reconcile(self, candidate: CandidateTask, existing_records: List[ExistingRecord]) -> Proposal:
        """
        Reconcile one candidate.

        Args:
            candidate: Normalized candidate task
            existing_records: Every record of the chosen destination store

        Returns:
            Proposal satisfying the CREATE/UPDATE invariant

        Raises:
            ReconciliationError: on any contract violation
        """
        try:
            raw = self._comparator.compare(candidate, existing_records)
        except ComparatorError as e:
            raise ReconciliationError(candidate.title, str(e)) from e

        if not isinstance(raw, dict):
            raise ReconciliationError(candidate.title, f"comparator answer is not an object: {type(raw).__name__}")

        try:
            answer = ComparatorResponse.model_validate(_normalize_answer(raw))
        except ValidationError as e:
            raise ReconciliationError(candidate.title, f"malformed comparator answer: {e.error_count()} error(s)") from e

        matched = self._validate_target(candidate, answer, existing_records)
        self._validate_preserved(candidate, answer)

        if answer.action == ProposalAction.UPDATE:
            proposal_id = matched.id
            status = answer.status or matched.status or candidate.status
        else:
            proposal_id = new_temp_id()
            status = answer.status or candidate.status

        return Proposal(
            id=proposal_id,
            action=answer.action,
            title=answer.title.strip() or candidate.title,
            notes=answer.notes.strip() or candidate.notes,
            owner=candidate.owner,
            priority=candidate.priority,
            status=status,
            project=answer.project.strip() or candidate.project,
            linked_reference=candidate.linked_reference,
            start_date=candidate.start_date,
            due_date=candidate.due_date,
            focus_this_week=candidate.focus_this_week,
            external_url=answer.external_url,
            iteration=1,
        )

    def _validate_target(
        self,
        candidate: CandidateTask,
        answer: ComparatorResponse,
        existing_records: List[ExistingRecord],
    ) -> Optional[ExistingRecord]:
        url = answer.external_url

        if answer.action == ProposalAction.CREATE:
            if url != NEW_TASK_URL:
                raise ReconciliationError(candidate.title, f"CREATE must carry {NEW_TASK_URL!r}, got {url!r}")
            return None

        if not url or url == NEW_TASK_URL:
            raise ReconciliationError(candidate.title, "UPDATE action returned without an existing record url")

        matches = [r for r in existing_records if r.canonical_url == url]
        if not matches:
            raise ReconciliationError(candidate.title, f"UPDATE url {url!r} does not match any existing record")
        return matches[0]

    def _validate_preserved(self, candidate: CandidateTask, answer: ComparatorResponse) -> None:
        changed = [
            name for name in PRESERVED_FIELDS
            if getattr(answer, name) != getattr(candidate, name)
        ]
        if changed:
            raise ReconciliationError(
                candidate.title,
                f"comparator altered preserved field(s): {', '.join(changed)}",
            )

    def reconcile_all(
        self,
        candidates: List[CandidateTask],
        existing_records: List[ExistingRecord],
        session_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """Reconcile every candidate; failures are recorded, never fatal."""
        log = trace_logger(logger, session_id)
        result = ReconciliationResult()

        for candidate in candidates:
            try:
                proposal = self.reconcile(candidate, existing_records)
            except ReconciliationError as e:
                log.error("Comparison error, dropping candidate %s", e)
                result.failures.append(ReconciliationFailure(candidate=candidate, reason=e.reason))
                continue
            result.proposals.append(proposal)

        log.info(
            "Reconciled %d/%d candidate(s): %d create, %d update",
            len(result.proposals), len(candidates), result.creates, result.updates,
        )
        return result
