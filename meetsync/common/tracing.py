"""
Trace-aware logging.

Every log line about a transcript carries its session/trace id so work can be
joined across the webhook, the pipeline and later Slack interactions.
"""

import logging
from typing import Any, MutableMapping, Optional, Tuple

LOG_FORMAT = "[%(levelname)s] %(asctime)s %(name)s %(message)s"


class TraceAdapter(logging.LoggerAdapter):
    """Prefixes messages with ``[Trace: <id>]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        trace_id = self.extra.get("trace_id") or "N/A"
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("trace_id", trace_id)
        kwargs["extra"] = extra
        return f"[Trace: {trace_id}] {msg}", kwargs


def trace_logger(logger: logging.Logger, trace_id: Optional[str]) -> TraceAdapter:
    """Bind a logger to one session/trace id."""
    return TraceAdapter(logger, {"trace_id": trace_id})


def configure_logging(level: str = "INFO") -> None:
    """Install the process-wide log format (server entry point only)."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
