"""
Transcript Store

Keeps transcript history as one JSON document per transcript, keyed by the
trace id (transcripts_dir/<transcript_id>.json).
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from .schemas import TranscriptDocument

logger = logging.getLogger("meetsync.common.transcript_store")


class TranscriptStoreError(Exception):
    """Error reading or writing transcript history."""
    pass


class TranscriptStore:
    """File-backed document store for normalized transcripts."""

    def __init__(self, directory: Path):
        self._dir = Path(directory).expanduser()

    def _path(self, transcript_id: str) -> Path:
        safe_id = "".join(c for c in transcript_id if c.isalnum() or c in "-_")
        if not safe_id:
            raise TranscriptStoreError(f"Invalid transcript id: {transcript_id!r}")
        return self._dir / f"{safe_id}.json"

    def save(self, document: TranscriptDocument) -> Path:
        """Write a transcript document, replacing any previous version."""
        path = self._path(document.transcript_id)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(document.model_dump(mode="json"), f, indent=2, default=str)
        except OSError as e:
            raise TranscriptStoreError(f"Failed to save transcript {document.transcript_id}: {e}") from e
        return path

    def get(self, transcript_id: str) -> Optional[TranscriptDocument]:
        path = self._path(transcript_id)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return TranscriptDocument.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValueError) as e:
            raise TranscriptStoreError(f"Failed to load transcript {transcript_id}: {e}") from e

    def list_ids(self) -> List[str]:
        if not self._dir.exists():
            return []
        return sorted(p.stem for p in self._dir.glob("*.json"))
