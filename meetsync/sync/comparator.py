"""
Semantic Comparator

Decides whether a candidate task describes the same outcome as one of the
existing records. The answer is a raw dict; the Reconciler validates it.

- LLMComparator: meaning-based match via the configured LLM
- TitleMatchComparator: case-insensitive title containment, used when no LLM
  is configured
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..common.llm_client import LLMClient
from ..common.schemas import NEW_TASK_URL, CandidateTask, ExistingRecord, ProposalAction

logger = logging.getLogger("meetsync.sync.comparator")


COMPARE_SYSTEM = "You are a task sync manager. You decide whether a proposed task creates a new record or updates an existing one."

COMPARE_PROMPT = """Decide CREATE or UPDATE for the task proposal below.

MATCHING RULES:
- UPDATE only if the proposal clearly refers to the SAME OUTCOME as an existing task
- Match by meaning, not wording
- If multiple existing tasks match, choose exactly ONE: the best one

FIELD PRESERVATION RULES:
- owner MUST be copied from proposal.owner
- priority MUST be copied from proposal.priority
- linked_reference MUST be copied from proposal.linked_reference
- start_date MUST be copied from proposal.start_date
- due_date MUST be copied from proposal.due_date
- focus_this_week MUST be copied from proposal.focus_this_week

STRICT OUTPUT RULES:
- If UPDATE: external_url MUST be copied EXACTLY from the matched existing task's url, and status is that task's current status
- If CREATE: external_url MUST be exactly "New Task"

TASK PROPOSAL:
{proposal}

EXISTING TASKS:
{existing}

Respond with a valid JSON object only, with these keys:
{{"action": "CREATE" | "UPDATE", "external_url": "...", "status": "...", "title": "...", "owner": "...", "priority": "High" | "Medium" | "Low", "linked_reference": "...", "project": "...", "notes": "...", "start_date": "YYYY-MM-DD" or null, "due_date": "YYYY-MM-DD" or null, "focus_this_week": "Yes" | "No"}}

JSON:"""


class ComparatorError(Exception):
    """The comparator could not produce an answer."""
    pass


def candidate_fields(candidate: CandidateTask) -> Dict[str, Any]:
    """Candidate as a JSON-ready dict (dates as ISO strings, enums as values)."""
    return candidate.model_dump(mode="json")


class SemanticComparator(ABC):
    """Interface for the create-vs-update judgment."""

    @abstractmethod
    def compare(self, candidate: CandidateTask, existing_records: List[ExistingRecord]) -> Dict[str, Any]:
        """
        Classify one candidate against the existing records.

        Returns:
            Raw answer dict (action, external_url, status and the task fields)

        Raises:
            ComparatorError: when no answer could be obtained
        """
        pass


class LLMComparator(SemanticComparator):
    """Meaning-based comparator backed by the configured LLM."""

    def __init__(self, llm_client: LLMClient, max_tokens: int = 1024):
        self._llm = llm_client
        self._max_tokens = max_tokens

    @property
    def is_available(self) -> bool:
        return self._llm.is_available

    def compare(self, candidate: CandidateTask, existing_records: List[ExistingRecord]) -> Dict[str, Any]:
        if not self._llm.is_available:
            raise ComparatorError("LLM client is not available")

        existing = [
            {"id": r.id, "title": r.title, "status": r.status, "notes": r.notes, "url": r.canonical_url}
            for r in existing_records
        ]
        prompt = COMPARE_PROMPT.format(
            proposal=json.dumps(candidate_fields(candidate)),
            existing=json.dumps(existing),
        )

        try:
            data = self._llm.generate_json(prompt, system=COMPARE_SYSTEM, max_tokens=self._max_tokens)
        except Exception as e:
            raise ComparatorError(f"Comparison call failed: {e}") from e

        if not data:
            raise ComparatorError("Comparator returned no JSON object")
        return data


class TitleMatchComparator(SemanticComparator):
    """
    Deterministic fallback: a candidate updates the first existing record whose
    title contains the candidate title, or is contained by it (case-insensitive).
    """

    def compare(self, candidate: CandidateTask, existing_records: List[ExistingRecord]) -> Dict[str, Any]:
        answer = candidate_fields(candidate)
        needle = candidate.title.strip().lower()

        for record in existing_records:
            title = record.title.strip().lower()
            if title and needle and (needle in title or title in needle):
                answer.update(
                    action=ProposalAction.UPDATE.value,
                    external_url=record.canonical_url,
                    status=record.status or candidate.status,
                    title=record.title,
                )
                return answer

        answer.update(action=ProposalAction.CREATE.value, external_url=NEW_TASK_URL)
        return answer
