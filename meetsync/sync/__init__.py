"""
MeetSync Sync Engine - Transcript to Approved Records

Turns a meeting transcript into an ordered queue of task proposals that a
human approves one at a time in Slack; approved proposals are written to
Notion.

Key Components:
- Reconciler: CREATE vs UPDATE against existing records, field preservation
- SessionRegistry: Per-transcript proposal queues and cursors
- InteractionStateMachine: Accept / Skip / Feedback handling
- Cards: Slack Block Kit rendering and the button payload contract
- SyncPipeline: Extraction through first card
- Handlers: Read AI, generic webhook and Slack interactivity parsing

Rules:
1. A CREATE always carries "New Task"; an UPDATE always names one existing record
2. Owner, priority, linked reference, dates and focus are never rewritten by the comparator
3. The cursor moves by exactly one per Accept or Skip; feedback never moves it
4. Every log line about a transcript carries its trace id
"""

from .comparator import LLMComparator, SemanticComparator, TitleMatchComparator
from .dispatcher import BackgroundDispatcher
from .feedback import FeedbackSessionStore, merge_feedback
from .interaction import Acknowledgement, ActionEvent, ActionKind, FeedbackSubmission, InteractionStateMachine
from .pipeline import SyncPipeline, TranscriptJob
from .proposal_queue import ProposalQueue, SessionRegistry
from .reconciler import Reconciler, ReconciliationError

__all__ = [
    "LLMComparator",
    "SemanticComparator",
    "TitleMatchComparator",
    "BackgroundDispatcher",
    "FeedbackSessionStore",
    "merge_feedback",
    "Acknowledgement",
    "ActionEvent",
    "ActionKind",
    "FeedbackSubmission",
    "InteractionStateMachine",
    "SyncPipeline",
    "TranscriptJob",
    "ProposalQueue",
    "SessionRegistry",
    "Reconciler",
    "ReconciliationError",
]
