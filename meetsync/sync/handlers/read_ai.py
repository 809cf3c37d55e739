"""
Read AI Handler

Handles Read AI ``meeting_end`` webhooks: speaker blocks become
"Speaker: words" lines.
"""

from typing import Any, Dict, List, Optional

from .base import BaseHandler, TranscriptEvent


class ReadAIHandler(BaseHandler):
    """Handler for Read AI meeting webhooks."""

    TRIGGER = "meeting_end"

    def __init__(self):
        super().__init__("read_ai")

    def can_handle(self, raw_data: Dict[str, Any]) -> bool:
        return raw_data.get("trigger") == self.TRIGGER

    def _render_blocks(self, blocks: List[Dict[str, Any]]) -> str:
        lines = []
        for block in blocks:
            if not isinstance(block, dict):
                continue
            speaker = block.get("speaker") or {}
            name = speaker.get("name") if isinstance(speaker, dict) else None
            lines.append(f"{name or 'Unknown'}: {block.get('words', '')}")
        return "\n".join(lines)

    def parse_event(self, raw_data: Dict[str, Any]) -> Optional[TranscriptEvent]:
        transcript = raw_data.get("transcript")
        if not isinstance(transcript, dict) or not isinstance(transcript.get("speaker_blocks"), list):
            return None

        owner = raw_data.get("owner") or {}
        return TranscriptEvent(
            transcript=self._render_blocks(transcript["speaker_blocks"]),
            source=self.source_name,
            source_id=(owner.get("email") if isinstance(owner, dict) else None) or "read_ai_webhook",
            meeting_title=raw_data.get("title") or "Read AI Meeting",
            participants=[p for p in raw_data.get("participants") or [] if isinstance(p, dict)],
            raw_data=raw_data,
        )
