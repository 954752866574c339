"""Tests for the reminder/escalation timer scheduler."""

import asyncio

import pytest
import pytest_asyncio

from schedulink.conversation.timeouts import TimeoutScheduler
from tests.conftest import KEY

OTHER = "905559876543@s.whatsapp.net"


class Recorder:
    def __init__(self) -> None:
        self.reminders: list[str] = []
        self.escalations: list[str] = []

    async def on_reminder(self, key: str) -> None:
        self.reminders.append(key)

    async def on_escalation(self, key: str) -> None:
        self.escalations.append(key)


@pytest.fixture
def recorder():
    return Recorder()


@pytest_asyncio.fixture
async def scheduler(clock, recorder):
    sched = TimeoutScheduler(600, 1200, recorder.on_reminder, recorder.on_escalation, sleep=clock.sleep)
    clock.settle = sched.settle
    yield sched
    sched.clear_all()


class TestConstruction:
    @pytest.mark.parametrize("reminder,escalation", [(0, 10), (10, 10), (20, 10)])
    def test_rejects_bad_delays(self, recorder, reminder, escalation):
        with pytest.raises(ValueError, match="reminder_delay"):
            TimeoutScheduler(reminder, escalation, recorder.on_reminder, recorder.on_escalation)


class TestFiring:
    @pytest.mark.asyncio
    async def test_reminder_then_escalation(self, scheduler, clock, recorder):
        scheduler.start(KEY)
        await clock.advance(599)
        assert recorder.reminders == []

        await clock.advance(1)
        assert recorder.reminders == [KEY]
        assert recorder.escalations == []
        assert scheduler.has_timers(KEY)

        await clock.advance(600)
        assert recorder.escalations == [KEY]
        assert not scheduler.has_timers(KEY)

    @pytest.mark.asyncio
    async def test_nothing_fires_after_escalation(self, scheduler, clock, recorder):
        scheduler.start(KEY)
        await clock.advance(1200)
        await clock.advance(5000)
        assert recorder.reminders == [KEY]
        assert recorder.escalations == [KEY]
        assert clock.pending == 0

    @pytest.mark.asyncio
    async def test_skip_reminder(self, scheduler, clock, recorder):
        scheduler.start(KEY, escalation_delay=300, skip_reminder=True)
        await clock.advance(300)
        assert recorder.reminders == []
        assert recorder.escalations == [KEY]

    @pytest.mark.asyncio
    async def test_negative_override_fires_immediately(self, scheduler, clock, recorder):
        scheduler.start(KEY, reminder_delay=-50, escalation_delay=100)
        await clock.advance(0)
        assert recorder.reminders == [KEY]

    @pytest.mark.asyncio
    async def test_callback_errors_are_swallowed(self, clock, recorder):
        async def broken(key: str) -> None:
            raise RuntimeError("boom")

        sched = TimeoutScheduler(600, 1200, broken, recorder.on_escalation, sleep=clock.sleep)
        clock.settle = sched.settle
        sched.start(KEY)
        await clock.advance(1200)
        assert recorder.escalations == [KEY]
        assert not sched.has_timers(KEY)


class TestClearing:
    @pytest.mark.asyncio
    async def test_clear_prevents_firing(self, scheduler, clock, recorder):
        scheduler.start(KEY)
        await clock.advance(300)
        assert scheduler.clear(KEY)
        await clock.advance(2000)
        assert recorder.reminders == []
        assert recorder.escalations == []

    @pytest.mark.asyncio
    async def test_clear_unknown_key(self, scheduler):
        assert not scheduler.clear(KEY)

    @pytest.mark.asyncio
    async def test_restart_replaces_pair(self, scheduler, clock, recorder):
        scheduler.start(KEY)
        await clock.advance(500)
        scheduler.start(KEY)
        assert scheduler.active_count() == 1

        await clock.advance(500)
        assert recorder.reminders == []  # old reminder at 600 was torn down
        await clock.advance(100)
        assert recorder.reminders == [KEY]

    @pytest.mark.asyncio
    async def test_pairs_per_key_are_independent(self, scheduler, clock, recorder):
        scheduler.start(KEY)
        scheduler.start(OTHER)
        scheduler.clear(KEY)
        await clock.advance(600)
        assert recorder.reminders == [OTHER]

    @pytest.mark.asyncio
    async def test_clear_all(self, scheduler, clock, recorder):
        scheduler.start(KEY)
        scheduler.start(OTHER)
        scheduler.clear_all()
        assert scheduler.active_count() == 0
        await clock.advance(2000)
        assert recorder.reminders == []

    @pytest.mark.asyncio
    async def test_clearing_from_inside_callback_does_not_cancel_it(self, clock):
        finished: list[str] = []
        holder: dict[str, TimeoutScheduler] = {}

        async def on_reminder(key: str) -> None:
            holder["sched"].clear(key)
            await asyncio.sleep(0)
            finished.append(key)

        async def on_escalation(key: str) -> None:
            finished.append("escalation")

        sched = TimeoutScheduler(600, 1200, on_reminder, on_escalation, sleep=clock.sleep)
        holder["sched"] = sched
        clock.settle = sched.settle
        sched.start(KEY)
        await clock.advance(1200)
        assert finished == [KEY]
        assert not sched.has_timers(KEY)

    @pytest.mark.asyncio
    async def test_rearm_from_escalation_callback_survives(self, clock, recorder):
        holder: dict[str, TimeoutScheduler] = {}

        async def on_escalation(key: str) -> None:
            holder["sched"].start(key)

        sched = TimeoutScheduler(600, 1200, recorder.on_reminder, on_escalation, sleep=clock.sleep)
        holder["sched"] = sched
        clock.settle = sched.settle
        sched.start(KEY)
        await clock.advance(1200)
        assert sched.has_timers(KEY)
        sched.clear_all()
