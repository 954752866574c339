from schedulink.conversation.state_machine import (
    Effect,
    InvalidTransitionError,
    NegotiationEvent,
    NegotiationState,
    state_from_context,
    transition,
)
from schedulink.conversation.timeouts import TimeoutScheduler, TimerPair

__all__ = [
    "NegotiationState",
    "NegotiationEvent",
    "Effect",
    "InvalidTransitionError",
    "transition",
    "state_from_context",
    "TimeoutScheduler",
    "TimerPair",
]
