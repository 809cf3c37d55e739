"""
Webhook Handler

Handles the generic ``{transcript, meeting_title, email}`` webhook body.
"""

from typing import Any, Dict, Optional

from .base import BaseHandler, TranscriptEvent


class WebhookHandler(BaseHandler):
    """Handler for plain transcript uploads."""

    def __init__(self):
        super().__init__("webhook")

    def can_handle(self, raw_data: Dict[str, Any]) -> bool:
        return "transcript" in raw_data

    def parse_event(self, raw_data: Dict[str, Any]) -> Optional[TranscriptEvent]:
        transcript = raw_data.get("transcript")
        if not isinstance(transcript, str) or not transcript.strip():
            return None

        return TranscriptEvent(
            transcript=transcript,
            source=self.source_name,
            source_id=raw_data.get("email") or "anonymous",
            meeting_title=raw_data.get("meeting_title") or "Webhook Upload",
            raw_data=raw_data,
        )
