"""
Finite state machine for the negotiation lifecycle.

Defines the four negotiation states, the events that move between them and
the side effects each transition requests. The transition function is pure:
it never sends, persists or arms anything. The orchestrator interprets the
returned effects, which keeps the flow deterministic and easy to test.

Usage:
    state, effects = transition(NegotiationState.IDLE, NegotiationEvent.TURN_SENT)
    assert state == NegotiationState.AWAITING_REPLY
    assert Effect.ARM_TIMERS in effects
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from schedulink.schemas.conversation_schema import ConversationContext

logger = logging.getLogger(__name__)


class NegotiationState(str, Enum):
    """All possible states of one negotiation."""
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    COMPLETED = "completed"
    ESCALATED = "escalated"


class NegotiationEvent(str, Enum):
    """Events that cause state transitions."""
    TURN_SENT = "turn_sent"
    REPLY_RECEIVED = "reply_received"
    CONCLUDED = "concluded"
    REMINDER_DUE = "reminder_due"
    ESCALATION_DUE = "escalation_due"


class Effect(str, Enum):
    """Side effects requested by a transition, run in the listed order."""
    CLEAR_TIMERS = "clear_timers"
    MARK_AWAITING = "mark_awaiting"
    ARM_TIMERS = "arm_timers"
    CLEAR_AWAITING = "clear_awaiting"
    SEND_REMINDER = "send_reminder"
    MARK_REMINDER_SENT = "mark_reminder_sent"
    NOTIFY_REMINDER = "notify_reminder"
    MARK_ESCALATED = "mark_escalated"
    NOTIFY_ESCALATION = "notify_escalation"
    MARK_COMPLETED = "mark_completed"
    BOOK_CALENDAR = "book_calendar"
    CREATE_APPOINTMENT = "create_appointment"
    NOTIFY_COMPLETION = "notify_completion"


@dataclass(frozen=True)
class Transition:
    """A single valid state transition."""
    from_state: NegotiationState
    event: NegotiationEvent
    to_state: NegotiationState
    effects: tuple[Effect, ...] = ()


class InvalidTransitionError(Exception):
    """Raised when an event is not valid from the current state."""


_SEND = (Effect.CLEAR_TIMERS, Effect.MARK_AWAITING, Effect.ARM_TIMERS)
_REPLY = (Effect.CLEAR_TIMERS, Effect.CLEAR_AWAITING)
_CONCLUDE = (
    Effect.CLEAR_TIMERS,
    Effect.MARK_COMPLETED,
    Effect.BOOK_CALENDAR,
    Effect.CREATE_APPOINTMENT,
    Effect.NOTIFY_COMPLETION,
)

TRANSITIONS: list[Transition] = [
    # --- Outbound turn ---
    Transition(NegotiationState.IDLE, NegotiationEvent.TURN_SENT,
               NegotiationState.AWAITING_REPLY, _SEND),
    Transition(NegotiationState.AWAITING_REPLY, NegotiationEvent.TURN_SENT,
               NegotiationState.AWAITING_REPLY, _SEND),
    Transition(NegotiationState.ESCALATED, NegotiationEvent.TURN_SENT,
               NegotiationState.AWAITING_REPLY, _SEND),

    # --- Inbound reply ---
    Transition(NegotiationState.AWAITING_REPLY, NegotiationEvent.REPLY_RECEIVED,
               NegotiationState.IDLE, _REPLY),
    Transition(NegotiationState.ESCALATED, NegotiationEvent.REPLY_RECEIVED,
               NegotiationState.IDLE, _REPLY),
    Transition(NegotiationState.IDLE, NegotiationEvent.REPLY_RECEIVED,
               NegotiationState.IDLE, _REPLY),

    # --- Conclusion ---
    Transition(NegotiationState.IDLE, NegotiationEvent.CONCLUDED,
               NegotiationState.COMPLETED, _CONCLUDE),
    Transition(NegotiationState.AWAITING_REPLY, NegotiationEvent.CONCLUDED,
               NegotiationState.COMPLETED, _CONCLUDE),
    # A late reply after escalation can still settle the slot.
    Transition(NegotiationState.ESCALATED, NegotiationEvent.CONCLUDED,
               NegotiationState.COMPLETED, _CONCLUDE),

    # --- Timers ---
    Transition(NegotiationState.AWAITING_REPLY, NegotiationEvent.REMINDER_DUE,
               NegotiationState.AWAITING_REPLY,
               (Effect.SEND_REMINDER, Effect.MARK_REMINDER_SENT, Effect.NOTIFY_REMINDER)),
    Transition(NegotiationState.AWAITING_REPLY, NegotiationEvent.ESCALATION_DUE,
               NegotiationState.ESCALATED,
               (Effect.MARK_ESCALATED, Effect.CLEAR_TIMERS, Effect.NOTIFY_ESCALATION)),

    # --- Stale timer firings are no-ops ---
    Transition(NegotiationState.IDLE, NegotiationEvent.REMINDER_DUE, NegotiationState.IDLE),
    Transition(NegotiationState.IDLE, NegotiationEvent.ESCALATION_DUE, NegotiationState.IDLE),
    Transition(NegotiationState.ESCALATED, NegotiationEvent.REMINDER_DUE,
               NegotiationState.ESCALATED),
    Transition(NegotiationState.ESCALATED, NegotiationEvent.ESCALATION_DUE,
               NegotiationState.ESCALATED),
]


def transition(
    state: NegotiationState, event: NegotiationEvent
) -> tuple[NegotiationState, tuple[Effect, ...]]:
    """
    Compute the next state and the effects to run.

    Args:
        state: Current negotiation state.
        event: The event being applied.

    Returns:
        The new state and the ordered effects to interpret.

    Raises:
        InvalidTransitionError: If no valid transition exists.
    """
    if state == NegotiationState.COMPLETED:
        # Terminal: once concluded, nothing changes the negotiation.
        return state, ()

    for t in TRANSITIONS:
        if t.from_state == state and t.event == event:
            logger.debug(
                "State transition: %s -> %s (event: %s)",
                state.value, t.to_state.value, event.value,
            )
            return t.to_state, t.effects

    valid = [e.value for e in valid_events(state)]
    raise InvalidTransitionError(
        f"No valid transition from '{state.value}' "
        f"with event '{event.value}'. Valid events: {valid}"
    )


def valid_events(state: NegotiationState) -> list[NegotiationEvent]:
    """Return all events valid from ``state``."""
    if state == NegotiationState.COMPLETED:
        return list(NegotiationEvent)
    return [t.event for t in TRANSITIONS if t.from_state == state]


def state_from_context(context: Optional[ConversationContext]) -> NegotiationState:
    """Derive the current state from the persisted flags of a negotiation."""
    if context is None:
        return NegotiationState.IDLE
    if context.is_completed:
        return NegotiationState.COMPLETED
    if context.awaiting_reply:
        return NegotiationState.AWAITING_REPLY
    if context.escalated_at is not None:
        return NegotiationState.ESCALATED
    return NegotiationState.IDLE


def is_terminal(state: NegotiationState) -> bool:
    return state == NegotiationState.COMPLETED
