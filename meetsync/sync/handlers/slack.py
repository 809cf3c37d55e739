"""
Slack Interaction Handler

Verifies and parses Slack interactivity requests (button clicks and modal
submissions) into ActionEvents and FeedbackSubmissions.
"""

import hmac
import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional, Union
from urllib.parse import parse_qs

from ..cards import (
    FEEDBACK_CALLBACK_ID,
    PayloadError,
    decode_action_payload,
    form_id_from_metadata,
    parse_feedback_form,
)
from ..interaction import ActionEvent, ActionKind, FeedbackSubmission

logger = logging.getLogger("meetsync.sync.handlers.slack")

Interaction = Union[ActionEvent, FeedbackSubmission]


class SlackInteractionHandler:
    """
    Handler for the Slack interactivity endpoint.

    Processes:
    - block_actions (accept_task / skip_task / feedback_task buttons)
    - view_submission (feedback_modal_submit)

    Ignores every other interaction type.
    """

    def __init__(self, signing_secret: str = ""):
        """
        Initialize Slack interaction handler.

        Args:
            signing_secret: Slack signing secret for verification
        """
        self.source_name = "slack"
        self._signing_secret = signing_secret

    def verify_signature(
        self,
        body: bytes,
        signature: str,
        timestamp: str
    ) -> bool:
        """
        Verify Slack request signature.

        Args:
            body: Raw request body
            signature: X-Slack-Signature header
            timestamp: X-Slack-Request-Timestamp header

        Returns:
            True if signature is valid
        """
        if not self._signing_secret:
            # Skip verification if no secret configured
            return True

        if not signature or not timestamp:
            return False

        # Check timestamp is recent (within 5 minutes)
        try:
            ts = int(timestamp)
            if abs(time.time() - ts) > 300:
                return False
        except ValueError:
            return False

        sig_basestring = f"v0:{timestamp}:{body.decode('utf-8')}"
        expected_sig = "v0=" + hmac.new(
            self._signing_secret.encode('utf-8'),
            sig_basestring.encode('utf-8'),
            hashlib.sha256
        ).hexdigest()

        return hmac.compare_digest(expected_sig, signature)

    def decode_body(self, body: bytes) -> Dict[str, Any]:
        """Extract the JSON ``payload`` field of a form-encoded body."""
        try:
            fields = parse_qs(body.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise PayloadError(f"Interaction body is not UTF-8: {e}") from e

        raw = (fields.get("payload") or [None])[0]
        if not raw:
            raise PayloadError("Interaction body has no payload field")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PayloadError(f"Interaction payload is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise PayloadError("Interaction payload is not an object")
        return data

    def parse_interaction(self, data: Dict[str, Any]) -> Optional[Interaction]:
        """
        Parse a decoded interaction payload.

        Returns:
            ActionEvent, FeedbackSubmission, or None if the interaction is ignored

        Raises:
            PayloadError: if a recognized interaction is malformed
        """
        kind = data.get("type")
        user = (data.get("user") or {}).get("id", "")

        if kind == "block_actions":
            actions = data.get("actions") or []
            if not actions:
                return None
            action = actions[0]
            try:
                action_kind = ActionKind(action.get("action_id"))
            except ValueError:
                logger.info("Ignoring unknown action %s", action.get("action_id"))
                return None

            return ActionEvent(
                kind=action_kind,
                payload=decode_action_payload(action.get("value")),
                response_url=data.get("response_url") or "",
                trigger_id=data.get("trigger_id") or "",
                user=user,
            )

        if kind == "view_submission":
            view = data.get("view") or {}
            if view.get("callback_id") != FEEDBACK_CALLBACK_ID:
                return None
            return FeedbackSubmission(
                form_id=form_id_from_metadata(view.get("private_metadata")),
                values=parse_feedback_form((view.get("state") or {}).get("values") or {}),
                user=user,
            )

        return None
