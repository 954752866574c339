"""Shared test fixtures and helpers."""

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Sequence

import pytest
import pytest_asyncio

from schedulink.agents.generation import ChatMessage, GenerationFailure
from schedulink.agents.negotiator import NegotiationAgent
from schedulink.channels.base import DeliveryFailure, Presence, Transport
from schedulink.config import AppConfig, settings
from schedulink.orchestrator import Orchestrator
from schedulink.storage import ConversationStore
from schedulink.tools.calendar import InMemoryCalendar
from schedulink.tools.notifications import NotificationFailure

PHONE = "+90 555 123 45 67"
KEY = "905551234567@s.whatsapp.net"
REMINDER_DELAY = 600
ESCALATION_DELAY = 1200


class ManualClock:
    """Fast-forwarded clock: ``sleep`` only returns when ``advance`` passes its deadline."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc)
        self.settle: Optional[Callable[[], Awaitable[None]]] = None
        self._sleepers: list[tuple[datetime, asyncio.Future]] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        entry = (self.current + timedelta(seconds=delay), future)
        self._sleepers.append(entry)
        try:
            await future
        finally:
            if entry in self._sleepers:
                self._sleepers.remove(entry)

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self.current + timedelta(seconds=seconds)
        while True:
            # Let freshly created timer tasks register their sleep first.
            for _ in range(3):
                await asyncio.sleep(0)
            due = [s for s in self._sleepers if s[0] <= target and not s[1].done()]
            if not due:
                break
            deadline, future = min(due, key=lambda s: s[0])
            self.current = max(self.current, deadline)
            future.set_result(None)
            for _ in range(3):
                await asyncio.sleep(0)
            if self.settle is not None:
                await self.settle()
        self.current = target


class StubTextGenerator:
    """Returns queued replies in order; raises GenerationFailure when told to or when empty."""

    def __init__(self, replies: Sequence[str] = ()) -> None:
        self.replies = list(replies)
        self.calls: list[list[ChatMessage]] = []
        self.fail = False

    async def generate(self, messages: Sequence[ChatMessage]) -> str:
        self.calls.append(list(messages))
        if self.fail or not self.replies:
            raise GenerationFailure("stub generator failure")
        return self.replies.pop(0)


class RecordingTransport(Transport):
    channel_name = "recording"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.presence: list[tuple[str, Presence]] = []
        self.fail_sends = 0
        self.fail_presence = False

    async def send_text(self, address: str, text: str) -> None:
        if self.fail_sends > 0:
            self.fail_sends -= 1
            raise DeliveryFailure("transport unavailable")
        self.sent.append((address, text))

    async def send_presence(self, address: str, presence: Presence) -> None:
        if self.fail_presence:
            raise DeliveryFailure("presence unavailable")
        self.presence.append((address, presence))

    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[str] = []
        self.fail = False

    async def notify(self, message: str) -> None:
        if self.fail:
            raise NotificationFailure("operator channel down")
        self.messages.append(message)


def make_config(**negotiation_overrides) -> AppConfig:
    """Deterministic config: plain delivery, 10/20 minute timers."""
    negotiation = {
        "timezone": "Europe/Istanbul",
        "appointment_duration_minutes": 60,
        "strip_marker": True,
        "rearm_on_recovery": True,
    }
    negotiation.update(negotiation_overrides)
    return dataclasses.replace(
        settings,
        timeouts=dataclasses.replace(
            settings.timeouts,
            reminder_delay_sec=REMINDER_DELAY,
            escalation_delay_sec=ESCALATION_DELAY,
        ),
        delivery=dataclasses.replace(settings.delivery, humanize=False),
        address=dataclasses.replace(
            settings.address, domain_suffix="@s.whatsapp.net", min_digits=10
        ),
        negotiation=dataclasses.replace(settings.negotiation, **negotiation),
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def generator():
    return StubTextGenerator()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def calendar():
    cal = InMemoryCalendar()
    yield cal
    cal.reset()


@pytest.fixture
def test_config():
    return make_config()


@pytest_asyncio.fixture
async def store(clock):
    conversation_store = ConversationStore("sqlite://", now=clock.now, timezone_name="Europe/Istanbul")
    await conversation_store.connect()
    yield conversation_store
    await conversation_store.close()


def build_orchestrator(store, generator, transport, notifier, calendar, config, clock) -> Orchestrator:
    orchestrator = Orchestrator(
        store=store,
        agent=NegotiationAgent(generator),
        transport=transport,
        notifier=notifier,
        calendar=calendar,
        config=config,
        sleep=clock.sleep,
        now=clock.now,
    )
    clock.settle = orchestrator.scheduler.settle
    return orchestrator


@pytest_asyncio.fixture
async def orchestrator(store, generator, transport, notifier, calendar, test_config, clock):
    orch = build_orchestrator(store, generator, transport, notifier, calendar, test_config, clock)
    yield orch
    await orch.shutdown()
    await asyncio.sleep(0)
