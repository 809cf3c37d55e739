"""
Proposal Schemas

Core principle: a Proposal is either a CREATE carrying the "New Task"
sentinel as its external url, or an UPDATE pointing at exactly one existing
record. Anything else is a reconciliation defect and never enters a queue.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


NEW_TASK_URL = "New Task"
TBD = "TBD"


# ============================================================================
# Enums
# ============================================================================

class ProposalAction(str, Enum):
    """Whether a proposal adds a record or modifies an existing one"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"


class Priority(str, Enum):
    """Task priority levels"""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Focus(str, Enum):
    """Focus-this-week flag"""
    YES = "Yes"
    NO = "No"


class ProposalInvariantError(ValueError):
    """A proposal's action and external url disagree."""
    pass


def _check_action_url(action: ProposalAction, external_url: str) -> None:
    if action == ProposalAction.UPDATE and (not external_url or external_url == NEW_TASK_URL):
        raise ProposalInvariantError(
            f"UPDATE proposal must reference an existing record, got external_url={external_url!r}"
        )
    if action == ProposalAction.CREATE and external_url != NEW_TASK_URL:
        raise ProposalInvariantError(
            f"CREATE proposal must carry external_url={NEW_TASK_URL!r}, got {external_url!r}"
        )


# ============================================================================
# Models
# ============================================================================

class CandidateTask(BaseModel):
    """One task as extracted from a transcript, already normalized"""
    title: str = Field(..., min_length=1)
    notes: str = ""
    owner: str = "Unassigned"
    priority: Priority = Priority.MEDIUM
    status: str = "To do"
    project: str = ""
    linked_reference: str = TBD
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    focus_this_week: Focus = Focus.NO


class ExistingRecord(BaseModel):
    """A record already persisted in the destination store. Read-only."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    status: str = ""
    notes: str = ""
    canonical_url: str


class Destination(BaseModel):
    """A destination database the record store can write to"""
    id: str
    title: str


class Proposal(BaseModel):
    """
    One candidate change awaiting a human decision.

    For CREATE the id is temporary; for UPDATE it is the existing record id.
    iteration starts at 1 and grows with every feedback refinement.
    """
    id: str
    action: ProposalAction
    title: str
    notes: str = ""
    owner: str = "Unassigned"
    priority: Priority = Priority.MEDIUM
    status: str = "To do"
    project: str = ""
    linked_reference: str = TBD
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    focus_this_week: Focus = Focus.NO
    external_url: str = NEW_TASK_URL
    iteration: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _action_matches_url(self) -> "Proposal":
        _check_action_url(self.action, self.external_url)
        return self

    def check_invariant(self) -> None:
        """Re-check the action/url invariant (raises ProposalInvariantError)."""
        _check_action_url(self.action, self.external_url)

    @property
    def is_create(self) -> bool:
        return self.action == ProposalAction.CREATE


class ComparatorResponse(BaseModel):
    """
    Raw answer from the semantic comparator.

    Parsed leniently (unknown keys are ignored); the Reconciler decides
    whether the answer is acceptable.
    """
    model_config = ConfigDict(extra="ignore")

    action: ProposalAction
    external_url: str = ""
    status: str = ""
    title: str = ""
    owner: Optional[str] = None
    priority: Optional[Priority] = None
    linked_reference: Optional[str] = None
    project: str = ""
    notes: str = ""
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    focus_this_week: Optional[Focus] = None


class ActionPayload(BaseModel):
    """
    The value carried by every card button.

    The only correlation between a click and the queue is session_id plus
    queue_index; the embedded proposal is for display and validation.
    """
    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(..., min_length=1)
    queue_index: int = Field(..., ge=0)
    proposal: Proposal


class TranscriptDocument(BaseModel):
    """Transcript history entry kept in the document store"""
    transcript_id: str
    source: str = "unknown"
    source_id: str = "unknown"
    meeting_title: str = "Untitled"
    participants: List[Dict[str, Any]] = Field(default_factory=list)
    raw_transcript: str
    summary: Dict[str, Any] = Field(default_factory=dict)
    extracted_entities: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
