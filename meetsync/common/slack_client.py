"""
Slack Client

Outbound side of the approval surface: posting cards, replacing a card via
its response_url, and opening the feedback modal.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger("meetsync.common.slack_client")

SLACK_API_BASE = "https://slack.com/api"


class MessagingError(Exception):
    """Error delivering a message to the chat surface."""
    pass


class MessagingClient(ABC):
    """Interface the interaction state machine renders through."""

    @abstractmethod
    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[str]:
        """Post a new message. Returns the message timestamp if known."""
        pass

    @abstractmethod
    async def respond(self, response_url: str, message: Dict[str, Any]) -> None:
        """Reply through an interaction's response_url (e.g. replace the card)."""
        pass

    @abstractmethod
    async def open_view(self, trigger_id: str, view: Dict[str, Any]) -> None:
        """Open a modal view for a short-lived trigger id."""
        pass


class SlackClient(MessagingClient):
    """
    Slack Web API client over httpx.

    Usage:
        client = SlackClient(bot_token="xoxb-...")
        await client.post_message("#approvals", "Sync Report", blocks)
        await client.close()
    """

    def __init__(
        self,
        bot_token: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._bot_token = bot_token
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @property
    def is_configured(self) -> bool:
        return bool(self._bot_token)

    async def _call(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self._bot_token:
            raise MessagingError(f"Slack bot token not configured, cannot call {method}")
        try:
            response = await self._http.post(
                f"{SLACK_API_BASE}/{method}",
                json=body,
                headers={"Authorization": f"Bearer {self._bot_token}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise MessagingError(f"Slack {method} failed: {e}") from e
        except ValueError as e:
            raise MessagingError(f"Slack {method} returned invalid JSON: {e}") from e

        if not data.get("ok"):
            raise MessagingError(f"Slack {method} returned error: {data.get('error', 'unknown')}")
        return data

    async def post_message(
        self,
        channel: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[str]:
        body: Dict[str, Any] = {"channel": channel, "text": text}
        if blocks:
            body["blocks"] = blocks
        data = await self._call("chat.postMessage", body)
        return data.get("ts")

    async def respond(self, response_url: str, message: Dict[str, Any]) -> None:
        try:
            response = await self._http.post(response_url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MessagingError(f"Slack response_url delivery failed: {e}") from e

    async def open_view(self, trigger_id: str, view: Dict[str, Any]) -> None:
        await self._call("views.open", {"trigger_id": trigger_id, "view": view})

    async def close(self) -> None:
        await self._http.aclose()
