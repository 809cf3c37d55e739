"""
Base Handler

Abstract base class for transcript sources.
Provides a common interface for converting webhook bodies to TranscriptEvents.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class TranscriptEvent:
    """
    Common transcript format for all sources.

    This is the standardized format the pipeline works with,
    regardless of the original source (Read AI, generic webhook, etc.).
    """
    transcript: str
    source: str  # "read_ai", "webhook", "api"
    source_id: str
    meeting_title: str
    participants: List[Dict[str, Any]] = field(default_factory=list)
    raw_data: Optional[Dict[str, Any]] = None

    @property
    def is_valid(self) -> bool:
        """Check if the event carries transcript text"""
        return bool(self.transcript and self.transcript.strip())


class BaseHandler(ABC):
    """
    Abstract base class for transcript source handlers.

    Each handler must implement:
    - can_handle: Whether a webhook body belongs to this source
    - parse_event: Convert the body to a TranscriptEvent
    """

    def __init__(self, source_name: str):
        """
        Initialize handler.

        Args:
            source_name: Name of the source (e.g., "read_ai", "webhook")
        """
        self.source_name = source_name

    @abstractmethod
    def can_handle(self, raw_data: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    def parse_event(self, raw_data: Dict[str, Any]) -> Optional[TranscriptEvent]:
        """
        Parse raw webhook data into a TranscriptEvent.

        Args:
            raw_data: Raw JSON body from the source

        Returns:
            TranscriptEvent or None if the body has no usable transcript
        """
        pass

    def should_process(self, event: TranscriptEvent) -> bool:
        """Skip events without transcript text. Override for source-specific filtering."""
        return event.is_valid
