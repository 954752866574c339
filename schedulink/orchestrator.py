"""
Negotiation orchestrator.

Wires operator start commands, counterpart replies and timer firings to the
dialogue driver, the store, the transport and the operator notifier. Every
state change goes through the pure transition table in
``conversation.state_machine``; this module only interprets the effects.

All events are serialized through one queue when driven by ``run()``. A
handler may still suspend on the generator, the store or the transport, so
each step re-reads the persisted flags instead of trusting earlier reads.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union
from zoneinfo import ZoneInfo

from schedulink.agents.generation import GenerationFailure
from schedulink.agents.negotiator import DriverTurn, NegotiationAgent, strip_marker
from schedulink.channels.base import DeliveryFailure, Transport
from schedulink.channels.delivery import deliver, send_plain
from schedulink.config import AppConfig, settings
from schedulink.conversation.state_machine import (
    Effect,
    NegotiationEvent,
    NegotiationState,
    state_from_context,
    transition,
)
from schedulink.conversation.timeouts import TimeoutScheduler
from schedulink.logging_context import get_conversation_logger, set_conversation_key
from schedulink.schemas.conversation_schema import (
    ConversationContext,
    Direction,
    InboundMessage,
    StartCommand,
)
from schedulink.storage.store import ConversationStore
from schedulink.tools.calendar import CalendarBooker, CalendarError, build_event_window, event_summary
from schedulink.tools.notifications import NotificationSink, notify_safely
from schedulink.utils import address_to_phone, canonicalize_address

logger = get_conversation_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]
QueuedEvent = Union[InboundMessage, StartCommand, None]


@dataclass
class EffectRun:
    """What the effect interpreter needs to know about one transition."""
    key: str
    context: Optional[ConversationContext]
    concluded_time: Optional[str] = None
    calendar_event_id: Optional[str] = None
    reminder_delivered: bool = False


class Orchestrator:
    """Owns the timer table and drives every negotiation through its states."""

    def __init__(
        self,
        store: ConversationStore,
        agent: NegotiationAgent,
        transport: Transport,
        notifier: NotificationSink,
        calendar: CalendarBooker,
        config: Optional[AppConfig] = None,
        sleep: SleepFn = asyncio.sleep,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.agent = agent
        self.transport = transport
        self.notifier = notifier
        self.calendar = calendar
        self.config = config or settings
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.scheduler = TimeoutScheduler(
            self.config.timeouts.reminder_delay_sec,
            self.config.timeouts.escalation_delay_sec,
            on_reminder=self._on_reminder,
            on_escalation=self._on_escalation,
            sleep=sleep,
        )
        self._queue: "asyncio.Queue[QueuedEvent]" = asyncio.Queue()
        self._replying: set[str] = set()
        self._stopping = False

    # ------------------------------------------------------------------ #
    # Entry points
    # ------------------------------------------------------------------ #

    def canonicalize(self, address: str) -> str:
        return canonicalize_address(
            address,
            self.config.address.domain_suffix,
            self.config.address.min_digits,
        )

    async def start_negotiation(
        self, address: str, client_name: str, counterpart_name: Optional[str] = None
    ) -> str:
        """
        Open a negotiation and send the first turn.

        Returns:
            The canonical address of the counterpart.

        Raises:
            InvalidAddress: If ``address`` cannot be canonicalized.
            GenerationFailure: If the opening turn cannot be generated.
                Nothing is persisted in that case.
            DeliveryFailure: If the opening turn cannot be delivered. The
                operator is notified and the context stays open, unsent.
        """
        key = self.canonicalize(address)
        set_conversation_key(key)
        logger.info("Starting negotiation with %s for client %s", key, client_name)

        text = await self.agent.start(client_name, counterpart_name)
        context = await self.store.upsert_context(key, client_name, counterpart_name)

        outbound = self._outbound_text(text)
        await self._deliver_or_alert(key, outbound, context)
        await self.store.append_message(key, outbound, Direction.SENT)
        await self._apply(key, NegotiationEvent.TURN_SENT)
        return key

    async def handle_inbound(self, address: str, text: str) -> Optional[DriverTurn]:
        """
        Process a counterpart's message and answer it.

        Returns:
            The generated turn, or None when the message was not answered:
            either no negotiation was ever started with the sender, or it
            had already concluded and the message was only recorded.

        Raises:
            InvalidAddress: If ``address`` cannot be canonicalized.
            GenerationFailure: If the answer cannot be generated. The operator
                is notified, pending timers are restored and nothing is persisted.
            DeliveryFailure: If the answer cannot be delivered. The operator is
                notified, the received message is kept and pending timers are
                restored.
        """
        key = self.canonicalize(address)
        set_conversation_key(key)

        context = await self.store.get_context(key)
        if context is None:
            logger.warning("Ignoring message from %s: no negotiation was started", key)
            return None
        state = state_from_context(context)
        if state == NegotiationState.COMPLETED:
            await self.store.append_message(key, text, Direction.RECEIVED)
            logger.info("Message from %s recorded; negotiation already completed", key)
            return None

        self._replying.add(key)
        try:
            return await self._answer(key, text, context, state)
        finally:
            self._replying.discard(key)

    async def _answer(
        self, key: str, text: str, context: ConversationContext, state: NegotiationState
    ) -> DriverTurn:
        self.scheduler.clear(key)
        history = await self.store.get_history(key)
        try:
            turn = await self.agent.continue_(text, history, context)
        except GenerationFailure as exc:
            logger.error("Could not generate a reply for %s: %s", key, exc)
            await notify_safely(self.notifier, self._failure_message(key, context, exc))
            if state == NegotiationState.AWAITING_REPLY:
                self._rearm(key, context)
            raise

        await self.store.append_message(key, text, Direction.RECEIVED)
        outbound = self._outbound_text(turn.text)
        try:
            await self._deliver_or_alert(key, outbound, context)
        except DeliveryFailure:
            if state == NegotiationState.AWAITING_REPLY:
                self._rearm(key, context)
            raise

        await self._apply(key, NegotiationEvent.REPLY_RECEIVED)
        await self.store.append_message(key, outbound, Direction.SENT)

        if turn.concluded:
            await self._apply(key, NegotiationEvent.CONCLUDED, concluded_time=turn.concluded_time)
        else:
            await self._apply(key, NegotiationEvent.TURN_SENT)
        return turn

    async def recover(self) -> list[str]:
        """
        Surface unfinished negotiations after a restart.

        When ``rearm_on_recovery`` is enabled, negotiations still waiting for
        a reply get their timers back with whatever time remains since the
        last sent turn.
        """
        keys = await self.store.list_incomplete()
        logger.info("Recovered %d incomplete negotiation(s)", len(keys))
        for key in keys:
            logger.info("  incomplete: %s", key)

        if not self.config.negotiation.rearm_on_recovery:
            return keys

        for key in keys:
            context = await self.store.get_context(key)
            if state_from_context(context) == NegotiationState.AWAITING_REPLY:
                self._rearm(key, context)
        return keys

    async def list_active_conversations(self) -> list[str]:
        return await self.store.list_incomplete()

    # ------------------------------------------------------------------ #
    # Event queue
    # ------------------------------------------------------------------ #

    def submit_inbound(self, address: str, text: str) -> None:
        self._queue.put_nowait(InboundMessage(address=address, text=text))

    def submit_start(
        self, address: str, client_name: str, counterpart_name: Optional[str] = None
    ) -> None:
        self._queue.put_nowait(
            StartCommand(address=address, client_name=client_name, counterpart_name=counterpart_name)
        )

    async def run(self) -> None:
        """Consume queued events one at a time until ``shutdown()``."""
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    break
                await self._dispatch(event)
            finally:
                self._queue.task_done()
        logger.info("Event loop stopped")

    async def _dispatch(self, event: QueuedEvent) -> None:
        try:
            if isinstance(event, StartCommand):
                await self.start_negotiation(event.address, event.client_name, event.counterpart_name)
            elif isinstance(event, InboundMessage):
                await self.handle_inbound(event.address, event.text)
        except Exception:
            logger.exception("Failed to process %s", type(event).__name__)

    async def shutdown(self) -> None:
        """Stop the event loop and tear down every timer."""
        if not self._stopping:
            self._stopping = True
            self._queue.put_nowait(None)
        self.scheduler.clear_all()
        logger.info("Orchestrator shut down")

    # ------------------------------------------------------------------ #
    # Timer callbacks
    # ------------------------------------------------------------------ #

    async def _on_reminder(self, key: str) -> None:
        await self._on_timer(key, NegotiationEvent.REMINDER_DUE)

    async def _on_escalation(self, key: str) -> None:
        await self._on_timer(key, NegotiationEvent.ESCALATION_DUE)

    async def _on_timer(self, key: str, event: NegotiationEvent) -> None:
        """Apply a timer event unless the counterpart's reply is being answered."""
        set_conversation_key(key)
        context = await self.store.get_context(key)
        if self._reply_in_flight(key, event):
            return
        await self._transition(key, event, context)

    def _reply_in_flight(self, key: str, event: NegotiationEvent) -> bool:
        if key in self._replying:
            logger.info("%s for %s ignored; a reply is being answered", event.value, key)
            return True
        return False

    # ------------------------------------------------------------------ #
    # Effect interpretation
    # ------------------------------------------------------------------ #

    async def _apply(
        self, key: str, event: NegotiationEvent, concluded_time: Optional[str] = None
    ) -> NegotiationState:
        """Apply ``event`` to the freshly persisted state of ``key``."""
        context = await self.store.get_context(key)
        return await self._transition(key, event, context, concluded_time)

    async def _transition(
        self,
        key: str,
        event: NegotiationEvent,
        context: Optional[ConversationContext],
        concluded_time: Optional[str] = None,
    ) -> NegotiationState:
        state = state_from_context(context)
        new_state, effects = transition(state, event)
        if not effects:
            logger.debug("Event %s ignored for %s in state %s", event.value, key, state.value)
            return new_state

        logger.info("%s: %s -> %s", key, state.value, new_state.value)
        run = EffectRun(key=key, context=context, concluded_time=concluded_time)
        for effect in effects:
            await self._apply_effect(effect, run)
        return new_state

    async def _apply_effect(self, effect: Effect, run: EffectRun) -> None:
        key = run.key
        if effect == Effect.CLEAR_TIMERS:
            self.scheduler.clear(key)
        elif effect == Effect.MARK_AWAITING:
            await self.store.mark_awaiting_reply(key)
        elif effect == Effect.ARM_TIMERS:
            self.scheduler.start(key)
        elif effect == Effect.CLEAR_AWAITING:
            await self.store.clear_awaiting_reply(key)
        elif effect == Effect.SEND_REMINDER:
            run.reminder_delivered = await self._send_reminder(key)
        elif effect == Effect.MARK_REMINDER_SENT:
            await self.store.mark_reminder_sent(key)
        elif effect == Effect.NOTIFY_REMINDER:
            await notify_safely(
                self.notifier, self._reminder_message(key, run.context, run.reminder_delivered)
            )
        elif effect == Effect.MARK_ESCALATED:
            await self.store.mark_escalated(key)
        elif effect == Effect.NOTIFY_ESCALATION:
            await notify_safely(self.notifier, self._escalation_message(key, run.context))
        elif effect == Effect.MARK_COMPLETED:
            await self.store.mark_completed(key)
        elif effect == Effect.BOOK_CALENDAR:
            run.calendar_event_id = await self._book_calendar(run)
        elif effect == Effect.CREATE_APPOINTMENT:
            await self.store.create_appointment(
                key,
                self._client_name(run.context),
                run.concluded_time or "",
                calendar_event_id=run.calendar_event_id,
            )
        elif effect == Effect.NOTIFY_COMPLETION:
            await notify_safely(self.notifier, self._completion_message(run))
        else:
            raise ValueError(f"Unhandled effect: {effect}")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _outbound_text(self, text: str) -> str:
        if self.config.negotiation.strip_marker:
            return strip_marker(text)
        return text

    async def _deliver_or_alert(
        self, key: str, text: str, context: Optional[ConversationContext]
    ) -> None:
        """Deliver a generated turn; tell the operator when it cannot go out."""
        try:
            await deliver(self.transport, key, text, self.config.delivery, self._sleep)
        except DeliveryFailure as exc:
            logger.error("Delivery to %s failed: %s", key, exc)
            await notify_safely(self.notifier, self._delivery_failure_message(key, context, exc))
            raise

    async def _send_reminder(self, key: str) -> bool:
        text = self.config.timeouts.reminder_text
        try:
            await send_plain(self.transport, key, text)
        except DeliveryFailure as exc:
            logger.error("Reminder delivery to %s failed: %s", key, exc)
            return False
        await self.store.append_message(key, text, Direction.SENT)
        logger.info("Reminder sent to %s", key)
        return True

    async def _book_calendar(self, run: EffectRun) -> Optional[str]:
        if not run.concluded_time:
            return None
        counterpart = run.context.counterpart_name if run.context else None
        try:
            start, end = build_event_window(
                run.concluded_time,
                duration_minutes=self.config.negotiation.appointment_duration_minutes,
                timezone_name=self.config.negotiation.timezone,
                today=self._now().astimezone(ZoneInfo(self.config.negotiation.timezone)).date(),
            )
            event_id = await self.calendar.create_event(
                start, end, event_summary(counterpart, self.config.negotiation.service_name)
            )
        except CalendarError as exc:
            logger.error("Calendar booking for %s failed: %s", run.key, exc)
            return None
        logger.info("Calendar event %s booked for %s", event_id, run.key)
        return event_id

    def _rearm(self, key: str, context: ConversationContext) -> None:
        """Arm timers with the time remaining since the wait began."""
        elapsed = 0.0
        if context.awaiting_since is not None:
            elapsed = max(0.0, (self._now() - context.awaiting_since).total_seconds())
        self.scheduler.start(
            key,
            reminder_delay=self.config.timeouts.reminder_delay_sec - elapsed,
            escalation_delay=self.config.timeouts.escalation_delay_sec - elapsed,
            skip_reminder=context.reminder_sent_at is not None,
        )
        logger.info("Timers re-armed for %s (%.0fs already elapsed)", key, elapsed)

    # ------------------------------------------------------------------ #
    # Operator messages
    # ------------------------------------------------------------------ #

    @staticmethod
    def _client_name(context: Optional[ConversationContext]) -> str:
        if context is not None and context.client_name:
            return context.client_name
        return "Unknown client"

    @staticmethod
    def _counterpart_name(context: Optional[ConversationContext]) -> str:
        if context is not None and context.counterpart_name:
            return context.counterpart_name
        return "Unknown"

    def _completion_message(self, run: EffectRun) -> str:
        calendar_line = (
            f"📅 Calendar event: {run.calendar_event_id}"
            if run.calendar_event_id
            else "📅 Calendar event: not created"
        )
        return (
            "✅ Appointment confirmed!\n\n"
            f"👤 Client: {self._client_name(run.context)}\n"
            f"💈 Counterpart: {self._counterpart_name(run.context)}\n"
            f"📱 Phone: {address_to_phone(run.key)}\n"
            f"🕐 Time: {run.concluded_time}\n"
            f"{calendar_line}"
        )

    def _reminder_message(
        self, key: str, context: Optional[ConversationContext], delivered: bool = True
    ) -> str:
        minutes = int(self.config.timeouts.reminder_delay_sec // 60)
        if delivered:
            title = "⏰ Reminder sent"
            outcome = "a follow-up message was sent."
        else:
            title = "⏰ Reminder failed"
            outcome = "the follow-up message could not be delivered."
        return (
            f"{title}\n\n"
            f"💈 Counterpart: {self._counterpart_name(context)}\n"
            f"📱 Phone: {address_to_phone(key)}\n"
            f"👤 Client: {self._client_name(context)}\n\n"
            f"No reply after {minutes} minutes, {outcome}"
        )

    def _escalation_message(self, key: str, context: Optional[ConversationContext]) -> str:
        phone = address_to_phone(key)
        minutes = int(self.config.timeouts.escalation_delay_sec // 60)
        return (
            "🚨 ESCALATION: the counterpart is not responding!\n\n"
            f"💈 Counterpart: {self._counterpart_name(context)}\n"
            f"📱 Phone: {phone}\n"
            f"👤 Client: {self._client_name(context)}\n\n"
            f"⌛ {minutes} minutes without a reply. Contact them another way "
            "or try a different provider.\n\n"
            f"💡 Restart the negotiation with: start {phone.lstrip('+')} <client name>"
        )

    def _delivery_failure_message(
        self, key: str, context: Optional[ConversationContext], exc: Exception
    ) -> str:
        return (
            "📵 Could not deliver a message\n\n"
            f"💈 Counterpart: {self._counterpart_name(context)}\n"
            f"📱 Phone: {address_to_phone(key)}\n"
            f"👤 Client: {self._client_name(context)}\n"
            f"❗ Error: {exc}"
        )

    def _failure_message(
        self, key: str, context: Optional[ConversationContext], exc: Exception
    ) -> str:
        return (
            "⚠️ Could not generate a reply\n\n"
            f"💈 Counterpart: {self._counterpart_name(context)}\n"
            f"📱 Phone: {address_to_phone(key)}\n"
            f"❗ Error: {exc}"
        )
