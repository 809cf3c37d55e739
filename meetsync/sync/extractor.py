"""
Transcript Extractor

Turns raw meeting transcript text into normalized candidate tasks grouped by
project, plus the summary and entities kept in transcript history.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..common.llm_client import LLMClient
from ..common.llm_utils import clean_date, clean_str
from ..common.schemas import TBD, CandidateTask, Focus, Priority
from ..common.tracing import trace_logger

logger = logging.getLogger("meetsync.sync.extractor")

# Transcripts longer than this are truncated before extraction
MAX_TRANSCRIPT_CHARS = 60000

EXTRACT_SYSTEM = "You are an expert task-extraction assistant. You read meeting transcripts and extract structured tasks."

EXTRACT_PROMPT = """Analyze the meeting transcript and extract structured tasks.

RULES:
- Every task belongs to EXACTLY ONE project. If unsure, choose the most likely one.
- Task titles are concise.
- Notes are 2-4 sentences explaining the action, context, dependencies and next step.
- start_date / due_date are YYYY-MM-DD, or null when unknown.
- focus_this_week is "Yes" ONLY if the task is urgent or explicitly for this week, otherwise "No".
- linked_jtbd is the job-to-be-done the task serves, or "TBD" when unknown.
- status is one of "To do", "In progress", "Done".

Meeting title: {meeting_title}

Transcript:
{transcript}

Respond with a valid JSON object only:
{{
  "participants": [{{"name": "...", "email": "...", "role": "..."}}],
  "summary": {{"key_points": ["..."], "decisions": ["..."]}},
  "projects": [
    {{
      "project_name": "...",
      "tasks": [
        {{"task_title": "...", "owner": "...", "status": "To do", "priority_level": "High" | "Medium" | "Low",
          "linked_jtbd": "...", "start_date": null, "due_date": null, "focus_this_week": "Yes" | "No",
          "notes": "..."}}
      ]
    }}
  ]
}}

JSON:"""


class ExtractionError(Exception):
    """The transcript could not be turned into structured tasks."""
    pass


@dataclass
class ExtractionResult:
    """Normalized output of one transcript extraction"""
    project_name: Optional[str] = None
    candidates: List[CandidateTask] = field(default_factory=list)
    participants: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    entities: Dict[str, Any] = field(default_factory=dict)


def _choice(value: Any, enum_cls, default):
    text = clean_str(value).lower()
    for member in enum_cls:
        if member.value.lower() == text:
            return member
    return default


def _jtbd(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("name")
    return clean_str(value, TBD)


def normalize_task(task: Dict[str, Any], project_name: str) -> CandidateTask:
    """Map one extracted task onto a CandidateTask, filling defaults."""
    return CandidateTask(
        title=clean_str(task.get("task_title") or task.get("title")),
        notes=clean_str(task.get("notes")),
        owner=clean_str(task.get("owner"), "Unassigned"),
        priority=_choice(task.get("priority_level") or task.get("priority"), Priority, Priority.MEDIUM),
        status=clean_str(task.get("status"), "To do"),
        project=project_name,
        linked_reference=_jtbd(task.get("linked_jtbd") or task.get("linked_reference")),
        start_date=clean_date(task.get("start_date")),
        due_date=clean_date(task.get("due_date")),
        focus_this_week=_choice(task.get("focus_this_week"), Focus, Focus.NO),
    )


def normalize_extraction(data: Dict[str, Any], session_id: Optional[str] = None) -> ExtractionResult:
    """Flatten projects -> tasks into candidates; unusable tasks are dropped."""
    log = trace_logger(logger, session_id)
    result = ExtractionResult(
        participants=[p for p in data.get("participants") or [] if isinstance(p, dict)],
        summary=data.get("summary") if isinstance(data.get("summary"), dict) else {},
        entities={"projects": data.get("projects") or []},
    )

    projects = [p for p in data.get("projects") or [] if isinstance(p, dict)]
    for project in projects:
        name = clean_str(project.get("project_name"))
        if result.project_name is None and name:
            result.project_name = name
        for task in project.get("tasks") or []:
            if not isinstance(task, dict):
                continue
            try:
                result.candidates.append(normalize_task(task, name))
            except ValidationError as e:
                log.warning("Dropping unusable extracted task: %d error(s)", e.error_count())
    return result


class TranscriptExtractor:
    """LLM-backed transcript normalizer."""

    def __init__(self, llm_client: LLMClient, max_tokens: int = 4096):
        self._llm = llm_client
        self._max_tokens = max_tokens

    @property
    def is_available(self) -> bool:
        return self._llm.is_available

    def extract(self, transcript: str, meeting_title: str = "", session_id: Optional[str] = None) -> ExtractionResult:
        """
        Extract candidate tasks from a transcript.

        Raises:
            ExtractionError: if the LLM is unavailable, fails, or returns no JSON
        """
        log = trace_logger(logger, session_id)
        if not self._llm.is_available:
            raise ExtractionError("LLM client is not available")

        prompt = EXTRACT_PROMPT.format(
            meeting_title=meeting_title or "Untitled",
            transcript=transcript[:MAX_TRANSCRIPT_CHARS],
        )
        log.info("Sending transcript for extraction (%d chars)", len(transcript))
        try:
            data = self._llm.generate_json(prompt, system=EXTRACT_SYSTEM, max_tokens=self._max_tokens, timeout=120.0)
        except Exception as e:
            raise ExtractionError(f"Extraction call failed: {e}") from e

        if not data:
            raise ExtractionError("Extraction returned no JSON object")

        result = normalize_extraction(data, session_id)
        log.info("Extracted %d candidate task(s) for project %s", len(result.candidates), result.project_name)
        return result
