"""
Source Handlers

Handlers for inbound webhooks.
Transcript handlers convert source-specific bodies to a common TranscriptEvent.

Available Handlers:
- ReadAIHandler: Read AI meeting_end webhooks
- WebhookHandler: Generic {transcript, meeting_title, email} uploads
- SlackInteractionHandler: Slack button clicks and feedback forms
"""

from .base import BaseHandler, TranscriptEvent
from .read_ai import ReadAIHandler
from .slack import SlackInteractionHandler
from .webhook import WebhookHandler

__all__ = [
    "BaseHandler",
    "TranscriptEvent",
    "ReadAIHandler",
    "SlackInteractionHandler",
    "WebhookHandler",
]
