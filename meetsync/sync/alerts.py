"""
Slack Error Alerts

A logging handler that forwards ERROR records about a session to the
approval channel as a "Critical Error Detected" card. Only records that carry
a trace id (see ``common.tracing.trace_logger``) are forwarded.
"""

import asyncio
import contextvars
import logging
from typing import Optional

from ..common.slack_client import MessagingClient, MessagingError
from .cards import render_error_alert
from .dispatcher import BackgroundDispatcher

logger = logging.getLogger("meetsync.sync.alerts")

# set inside an alert task so failures it logs are not alerted on again
_in_alert = contextvars.ContextVar("meetsync_in_alert", default=False)


class SlackAlertHandler(logging.Handler):
    """
    Posts session errors to Slack through the background dispatcher.

    Records emitted from worker threads (``asyncio.to_thread``) are handed to
    the event loop given at construction.
    """

    def __init__(
        self,
        messenger: MessagingClient,
        channel: str,
        dispatcher: BackgroundDispatcher,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        level: int = logging.ERROR,
    ):
        super().__init__(level)
        self._messenger = messenger
        self._channel = channel
        self._dispatcher = dispatcher
        self._loop = loop

    def emit(self, record: logging.LogRecord) -> None:
        trace_id = getattr(record, "trace_id", None)
        if not trace_id or trace_id == "N/A" or record.name == logger.name or _in_alert.get():
            return
        try:
            message = record.getMessage()
            prefix = f"[Trace: {trace_id}] "
            if message.startswith(prefix):
                message = message[len(prefix):]
            detail = ""
            if record.exc_info and record.exc_info[1] is not None:
                exc = record.exc_info[1]
                detail = f"{type(exc).__name__}: {exc}"
            alert = render_error_alert(message, trace_id, detail)

            try:
                asyncio.get_running_loop()
            except RuntimeError:
                if self._loop is None or self._loop.is_closed():
                    return
                self._loop.call_soon_threadsafe(self._schedule, trace_id, alert)
                return
            self._schedule(trace_id, alert)
        except Exception:
            self.handleError(record)

    def _schedule(self, trace_id: str, alert: dict) -> None:
        self._dispatcher.submit(self._send(alert), session_id=trace_id, label="error alert")

    async def _send(self, alert: dict) -> None:
        _in_alert.set(True)
        try:
            await self._messenger.post_message(self._channel, alert["text"], alert["blocks"])
        except MessagingError as e:
            logger.warning("Failed to send error alert to Slack: %s", e)


def install_alert_handler(
    messenger: MessagingClient,
    channel: str,
    dispatcher: BackgroundDispatcher,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> SlackAlertHandler:
    """Attach a SlackAlertHandler to the ``meetsync`` logger tree."""
    handler = SlackAlertHandler(messenger, channel, dispatcher, loop=loop)
    logging.getLogger("meetsync").addHandler(handler)
    return handler
