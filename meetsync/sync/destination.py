"""
Destination Resolver

Chooses the one destination database whose title matches the extracted
project name. The LLM pick is only accepted if it is exactly one of the
known titles; otherwise a case-insensitive substring match is tried.
"""

import json
import logging
from typing import List, Optional

from ..common.llm_client import LLMClient
from ..common.schemas import Destination
from ..common.tracing import trace_logger

logger = logging.getLogger("meetsync.sync.destination")

RESOLVE_SYSTEM = "You match project names to database titles."

RESOLVE_PROMPT = """Given a project name and a list of database titles, pick the ONE database title that best matches the project.

Project Name:
"{project_name}"

Available database titles:
{titles}

Return exactly the best matching database title and nothing else.
If none matches with confidence, return an empty string."""


class DestinationNotFoundError(Exception):
    """No destination store matches the project."""
    pass


class DestinationResolver:
    """Project name -> Destination."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self._llm = llm_client

    def _llm_pick(self, project_name: str, titles: List[str], session_id: Optional[str]) -> Optional[str]:
        if self._llm is None or not self._llm.is_available:
            return None
        prompt = RESOLVE_PROMPT.format(project_name=project_name, titles=json.dumps(titles, indent=2))
        try:
            answer = self._llm.generate(prompt, system=RESOLVE_SYSTEM, max_tokens=100)
        except Exception as e:
            trace_logger(logger, session_id).warning("Destination match call failed: %s", e)
            return None
        answer = answer.strip().strip('"').strip()
        return answer if answer in titles else None

    def resolve(
        self,
        project_name: str,
        destinations: List[Destination],
        session_id: Optional[str] = None,
    ) -> Optional[Destination]:
        """Best matching destination, or None."""
        if not project_name or not destinations:
            return None

        titles = [d.title for d in destinations]
        chosen = self._llm_pick(project_name, titles, session_id)
        if chosen is None:
            needle = project_name.lower()
            chosen = next((t for t in titles if needle in t.lower()), None)
        if chosen is None:
            return None

        match = next(d for d in destinations if d.title == chosen)
        trace_logger(logger, session_id).info("Best destination match: %r (ID: %s)", match.title, match.id)
        return match
