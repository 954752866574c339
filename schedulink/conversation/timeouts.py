"""
Reminder and escalation timers, one pair per canonical address.

Arming a pair always tears down the previous pair for the same address, so
at most one pair is live per key. Cancellation is best-effort: a timer whose
delay has already elapsed is marked fired and is never cancelled from under
its callback. Callbacks must therefore re-check the persisted negotiation
state before acting, since a reply may have arrived in the meantime.

Usage:
    scheduler = TimeoutScheduler(600, 1200, on_reminder, on_escalation)
    scheduler.start("905551234567@s.whatsapp.net")
    scheduler.clear("905551234567@s.whatsapp.net")
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[str], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class TimerHandle:
    """One scheduled timer and whether its delay has already elapsed."""
    kind: str
    task: Optional["asyncio.Task[None]"] = None
    fired: bool = False

    def cancel(self) -> bool:
        if self.task is None or self.fired or self.task.done():
            return False
        self.task.cancel()
        return True


@dataclass
class TimerPair:
    """Live reminder/escalation timers for one address."""
    reminder: Optional[TimerHandle] = None
    escalation: Optional[TimerHandle] = None
    handles: list[TimerHandle] = field(default_factory=list)


class TimeoutScheduler:
    """Owns the per-address timer table. All access goes through start/clear."""

    def __init__(
        self,
        reminder_delay: float,
        escalation_delay: float,
        on_reminder: TimerCallback,
        on_escalation: TimerCallback,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if not 0 < reminder_delay < escalation_delay:
            raise ValueError(
                "reminder_delay must be positive and shorter than escalation_delay, "
                f"got {reminder_delay} and {escalation_delay}"
            )
        self.reminder_delay = reminder_delay
        self.escalation_delay = escalation_delay
        self._on_reminder = on_reminder
        self._on_escalation = on_escalation
        self._sleep = sleep
        self._timers: dict[str, TimerPair] = {}
        self._running: set["asyncio.Task[None]"] = set()

    def start(
        self,
        key: str,
        reminder_delay: Optional[float] = None,
        escalation_delay: Optional[float] = None,
        skip_reminder: bool = False,
    ) -> TimerPair:
        """
        Arm a fresh timer pair for ``key``.

        Args:
            key: Canonical address.
            reminder_delay: Override for the reminder delay.
            escalation_delay: Override for the escalation delay.
            skip_reminder: Arm only the escalation timer (used when recovering
                a wait whose reminder already went out).

        Returns:
            The newly armed pair.
        """
        self.clear(key)

        if reminder_delay is None:
            reminder_delay = self.reminder_delay
        if escalation_delay is None:
            escalation_delay = self.escalation_delay

        pair = TimerPair()
        if not skip_reminder:
            pair.reminder = self._schedule(key, "reminder", max(0.0, reminder_delay))
            pair.handles.append(pair.reminder)
        pair.escalation = self._schedule(key, "escalation", max(0.0, escalation_delay))
        pair.handles.append(pair.escalation)

        self._timers[key] = pair
        logger.info(
            "Timeout tracking started for %s (reminder: %s, escalation: %ss)",
            key,
            "skipped" if skip_reminder else f"{reminder_delay}s",
            escalation_delay,
        )
        return pair

    def clear(self, key: str) -> bool:
        """Tear down the pair for ``key``. Returns whether one existed."""
        pair = self._timers.pop(key, None)
        if pair is None:
            return False
        for handle in pair.handles:
            handle.cancel()
        logger.info("Timeout cleared for %s", key)
        return True

    def clear_all(self) -> None:
        """Tear down every pair (used on shutdown)."""
        for key in list(self._timers):
            self.clear(key)
        logger.info("All timeouts cleared")

    def has_timers(self, key: str) -> bool:
        return key in self._timers

    def active_count(self) -> int:
        """Number of addresses with a live timer pair (for monitoring)."""
        return len(self._timers)

    async def settle(self) -> None:
        """Wait for every timer callback that has already started to finish."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _schedule(self, key: str, kind: str, delay: float) -> TimerHandle:
        handle = TimerHandle(kind=kind)
        handle.task = asyncio.create_task(
            self._run(key, handle, delay), name=f"{kind}-timer:{key}"
        )
        return handle

    async def _run(self, key: str, handle: TimerHandle, delay: float) -> None:
        await self._sleep(delay)
        handle.fired = True
        current = asyncio.current_task()
        if current is not None:
            self._running.add(current)
        try:
            if handle.kind == "reminder":
                await self._on_reminder(key)
            else:
                await self._on_escalation(key)
        except Exception:
            logger.exception("%s timer for %s failed", handle.kind.capitalize(), key)
        finally:
            if current is not None:
                self._running.discard(current)
            if handle.kind == "escalation":
                self._release(key, handle)

    def _release(self, key: str, handle: TimerHandle) -> None:
        """Drop the pair after escalation, unless it was already re-armed."""
        pair = self._timers.get(key)
        if pair is not None and pair.escalation is handle:
            del self._timers[key]
            logger.debug("Escalation timer finished for %s; pair released", key)
