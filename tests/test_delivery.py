"""Tests for outbound delivery pacing and fallback."""

import dataclasses

import pytest

from schedulink.channels.base import DeliveryFailure, Presence
from schedulink.channels.delivery import deliver, send_humanized, typing_delay
from schedulink.config import DeliveryConfig
from tests.conftest import KEY, RecordingTransport

CONFIG = DeliveryConfig(
    humanize=True, typing_ms_per_char=40, min_typing_delay_sec=1.0, max_typing_delay_sec=8.0
)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class PausedFailingTransport(RecordingTransport):
    async def send_presence(self, address: str, presence: Presence) -> None:
        if presence == Presence.PAUSED:
            raise DeliveryFailure("presence unavailable")
        await super().send_presence(address, presence)


class TestTypingDelay:
    def test_proportional_to_length(self):
        assert typing_delay("x" * 100, CONFIG) == pytest.approx(4.0)

    def test_clamped_to_minimum(self):
        assert typing_delay("ok", CONFIG) == 1.0

    def test_clamped_to_maximum(self):
        assert typing_delay("x" * 1000, CONFIG) == 8.0


class TestHumanizedDelivery:
    @pytest.mark.asyncio
    async def test_presence_wraps_send(self):
        transport = RecordingTransport()
        sleep = SleepRecorder()
        await send_humanized(transport, KEY, "x" * 100, CONFIG, sleep)

        assert transport.presence == [(KEY, Presence.COMPOSING), (KEY, Presence.PAUSED)]
        assert transport.sent == [(KEY, "x" * 100)]
        assert sleep.delays == [pytest.approx(4.0)]

    @pytest.mark.asyncio
    async def test_falls_back_to_plain_send(self):
        transport = RecordingTransport()
        transport.fail_sends = 1
        await send_humanized(transport, KEY, "Merhaba", CONFIG, SleepRecorder())
        assert transport.sent == [(KEY, "Merhaba")]

    @pytest.mark.asyncio
    async def test_presence_failure_falls_back(self):
        transport = RecordingTransport()
        transport.fail_presence = True
        await send_humanized(transport, KEY, "Merhaba", CONFIG, SleepRecorder())
        assert transport.sent == [(KEY, "Merhaba")]

    @pytest.mark.asyncio
    async def test_paused_failure_does_not_resend(self):
        transport = PausedFailingTransport()
        await send_humanized(transport, KEY, "Merhaba", CONFIG, SleepRecorder())
        assert transport.sent == [(KEY, "Merhaba")]
        assert transport.presence == [(KEY, Presence.COMPOSING)]

    @pytest.mark.asyncio
    async def test_fallback_failure_propagates(self):
        transport = RecordingTransport()
        transport.fail_sends = 2
        with pytest.raises(DeliveryFailure):
            await send_humanized(transport, KEY, "Merhaba", CONFIG, SleepRecorder())
        assert transport.sent == []


class TestDeliver:
    @pytest.mark.asyncio
    async def test_plain_when_humanize_disabled(self):
        transport = RecordingTransport()
        sleep = SleepRecorder()
        await deliver(transport, KEY, "Merhaba", dataclasses.replace(CONFIG, humanize=False), sleep)
        assert transport.sent == [(KEY, "Merhaba")]
        assert transport.presence == []
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_plain_failure_propagates(self):
        transport = RecordingTransport()
        transport.fail_sends = 1
        with pytest.raises(DeliveryFailure):
            await deliver(transport, KEY, "Merhaba", dataclasses.replace(CONFIG, humanize=False))

    @pytest.mark.asyncio
    async def test_humanized_when_enabled(self):
        transport = RecordingTransport()
        sleep = SleepRecorder()
        await deliver(transport, KEY, "Merhaba", CONFIG, sleep)
        assert sleep.delays == [1.0]
        assert (KEY, Presence.COMPOSING) in transport.presence


class TestConsoleTransport:
    @pytest.mark.asyncio
    async def test_prints_turn(self, capsys):
        from schedulink.channels.console import ConsoleTransport

        transport = ConsoleTransport()
        await transport.send_presence(KEY, Presence.COMPOSING)
        await transport.send_text(KEY, "Merhaba")
        out = capsys.readouterr().out
        assert "typing" in out
        assert "Merhaba" in out
