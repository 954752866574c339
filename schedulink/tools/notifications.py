"""
Operator notifications.

Negotiation milestones (completion, reminder sent, escalation) are pushed
to a human operator. Notification failures never break the negotiation:
callers go through ``notify_safely``, which logs and drops the error.
"""

import logging
from typing import Optional, Protocol

import httpx

from schedulink.config import NotifierConfig, settings

logger = logging.getLogger(__name__)


class NotificationFailure(Exception):
    """Raised when the operator channel rejects a notification."""


class NotificationSink(Protocol):
    async def notify(self, message: str) -> None:
        """Deliver ``message`` to the operator or raise NotificationFailure."""
        ...


class TelegramNotifier:
    """Sends operator messages through the Telegram Bot API."""

    def __init__(
        self,
        config: Optional[NotifierConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or settings.notifier
        if not self._config.telegram_bot_token or not self._config.telegram_chat_id:
            raise ValueError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID are required for Telegram notifications")
        self._client = client or httpx.AsyncClient(timeout=self._config.timeout_sec)
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        base = self._config.telegram_api_base.rstrip("/")
        return f"{base}/bot{self._config.telegram_bot_token}/sendMessage"

    async def notify(self, message: str) -> None:
        try:
            response = await self._client.post(
                self.endpoint,
                json={"chat_id": self._config.telegram_chat_id, "text": message},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationFailure(f"Telegram notification failed: {exc}") from exc

        body = response.json()
        if not body.get("ok", False):
            raise NotificationFailure(
                f"Telegram notification rejected: {body.get('description', 'unknown error')}"
            )
        logger.debug("Operator notified via Telegram")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LoggingNotifier:
    """Writes operator messages to the log. Used when no channel is configured."""

    def __init__(self) -> None:
        self.sent: list[str] = []

    async def notify(self, message: str) -> None:
        self.sent.append(message)
        logger.info("Operator notification:\n%s", message)


async def notify_safely(sink: NotificationSink, message: str) -> bool:
    """Send a notification, logging instead of raising on failure."""
    try:
        await sink.notify(message)
    except Exception as exc:
        logger.error("Operator notification failed: %s", exc)
        return False
    return True


def build_notifier(config: Optional[NotifierConfig] = None) -> NotificationSink:
    """Telegram when credentials are configured, the log otherwise."""
    cfg = config or settings.notifier
    if cfg.telegram_bot_token and cfg.telegram_chat_id:
        return TelegramNotifier(cfg)
    logger.warning("Telegram credentials not set; operator notifications go to the log")
    return LoggingNotifier()
