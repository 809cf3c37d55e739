"""
MeetSync Common Module

Shared infrastructure: configuration, logging, LLM access and the clients
for Slack, Notion and transcript history.
"""

from .config import MeetSyncConfig, load_config
from .llm_client import LLMClient
from .notion_client import NotionClient, RecordStore, RecordKeepingError
from .slack_client import SlackClient, MessagingClient, MessagingError
from .tracing import trace_logger
from .transcript_store import TranscriptStore

__all__ = [
    "MeetSyncConfig",
    "load_config",
    "LLMClient",
    "NotionClient",
    "RecordStore",
    "RecordKeepingError",
    "SlackClient",
    "MessagingClient",
    "MessagingError",
    "trace_logger",
    "TranscriptStore",
]
