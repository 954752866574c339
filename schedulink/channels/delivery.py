"""
Outbound delivery with optional human-like pacing.

A humanized send shows a typing indicator, waits for a delay proportional
to the message length, sends, then clears the indicator. If a step up to and including the send
fails, the message falls back once to a plain send.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from schedulink.channels.base import DeliveryFailure, Presence, Transport
from schedulink.config import DeliveryConfig, settings

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def typing_delay(text: str, config: Optional[DeliveryConfig] = None) -> float:
    """Seconds to 'type' ``text``, clamped to the configured bounds."""
    cfg = config or settings.delivery
    raw = len(text) * cfg.typing_ms_per_char / 1000.0
    return min(max(raw, cfg.min_typing_delay_sec), cfg.max_typing_delay_sec)


async def send_plain(transport: Transport, address: str, text: str) -> None:
    """Send without pacing. Failures propagate as DeliveryFailure."""
    await transport.send_text(address, text)
    logger.debug("Message delivered to %s via %s", address, transport.channel_name)


async def send_humanized(
    transport: Transport,
    address: str,
    text: str,
    config: Optional[DeliveryConfig] = None,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Send with a typing indicator and a length-proportional delay.

    Falls back once to a plain send if the humanized path fails.

    Raises:
        DeliveryFailure: If the fallback plain send also fails.
    """
    try:
        await transport.send_presence(address, Presence.COMPOSING)
        await sleep(typing_delay(text, config))
        await transport.send_text(address, text)
    except DeliveryFailure as exc:
        logger.warning("Humanized send to %s failed (%s); falling back to plain send", address, exc)
        await send_plain(transport, address, text)
        return

    # Already sent; indicator errors never reach the fallback.
    try:
        await transport.send_presence(address, Presence.PAUSED)
    except DeliveryFailure as exc:
        logger.warning("Could not clear typing indicator for %s: %s", address, exc)
    logger.debug("Humanized message delivered to %s", address)


async def deliver(
    transport: Transport,
    address: str,
    text: str,
    config: Optional[DeliveryConfig] = None,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Deliver ``text`` humanized or plain depending on configuration."""
    cfg = config or settings.delivery
    if cfg.humanize:
        await send_humanized(transport, address, text, cfg, sleep)
    else:
        await send_plain(transport, address, text)
