"""
MeetSync Schemas

Proposal model and the contracts exchanged with the comparator, the card
surface and the transcript store.
"""

from .proposal import (
    NEW_TASK_URL,
    TBD,
    ActionPayload,
    CandidateTask,
    ComparatorResponse,
    Destination,
    ExistingRecord,
    Focus,
    Priority,
    Proposal,
    ProposalAction,
    ProposalInvariantError,
    TranscriptDocument,
)

__all__ = [
    "NEW_TASK_URL",
    "TBD",
    "ActionPayload",
    "CandidateTask",
    "ComparatorResponse",
    "Destination",
    "ExistingRecord",
    "Focus",
    "Priority",
    "Proposal",
    "ProposalAction",
    "ProposalInvariantError",
    "TranscriptDocument",
]
