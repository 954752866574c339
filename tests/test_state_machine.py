"""Tests for the negotiation state machine."""

import pytest

from schedulink.conversation.state_machine import (
    TRANSITIONS,
    Effect,
    InvalidTransitionError,
    NegotiationEvent,
    NegotiationState,
    is_terminal,
    state_from_context,
    transition,
    valid_events,
)
from schedulink.schemas.conversation_schema import ConversationContext

S = NegotiationState
E = NegotiationEvent


class TestTurnSent:
    @pytest.mark.parametrize("state", [S.IDLE, S.AWAITING_REPLY, S.ESCALATED])
    def test_sending_awaits_reply(self, state):
        new, effects = transition(state, E.TURN_SENT)
        assert new == S.AWAITING_REPLY
        assert effects == (Effect.CLEAR_TIMERS, Effect.MARK_AWAITING, Effect.ARM_TIMERS)

    def test_timers_torn_down_before_arming(self):
        _, effects = transition(S.AWAITING_REPLY, E.TURN_SENT)
        assert effects.index(Effect.CLEAR_TIMERS) < effects.index(Effect.ARM_TIMERS)

    def test_awaiting_persisted_before_arming(self):
        _, effects = transition(S.IDLE, E.TURN_SENT)
        assert effects.index(Effect.MARK_AWAITING) < effects.index(Effect.ARM_TIMERS)


class TestReplyReceived:
    @pytest.mark.parametrize("state", [S.IDLE, S.AWAITING_REPLY, S.ESCALATED])
    def test_reply_clears_wait(self, state):
        new, effects = transition(state, E.REPLY_RECEIVED)
        assert new == S.IDLE
        assert effects == (Effect.CLEAR_TIMERS, Effect.CLEAR_AWAITING)


class TestConcluded:
    @pytest.mark.parametrize("state", [S.IDLE, S.AWAITING_REPLY, S.ESCALATED])
    def test_conclusion_completes(self, state):
        new, effects = transition(state, E.CONCLUDED)
        assert new == S.COMPLETED
        assert Effect.MARK_COMPLETED in effects
        assert Effect.CREATE_APPOINTMENT in effects
        assert Effect.NOTIFY_COMPLETION in effects

    def test_calendar_booked_before_appointment_recorded(self):
        _, effects = transition(S.IDLE, E.CONCLUDED)
        assert effects.index(Effect.BOOK_CALENDAR) < effects.index(Effect.CREATE_APPOINTMENT)

    def test_invalid_transition_lists_valid_events(self, monkeypatch):
        import schedulink.conversation.state_machine as sm

        monkeypatch.setattr(sm, "TRANSITIONS", [t for t in sm.TRANSITIONS if t.event != E.CONCLUDED])
        with pytest.raises(InvalidTransitionError, match="Valid events"):
            sm.transition(S.IDLE, E.CONCLUDED)


class TestTimers:
    def test_reminder_keeps_waiting(self):
        new, effects = transition(S.AWAITING_REPLY, E.REMINDER_DUE)
        assert new == S.AWAITING_REPLY
        assert effects == (Effect.SEND_REMINDER, Effect.MARK_REMINDER_SENT, Effect.NOTIFY_REMINDER)

    def test_escalation_ends_wait(self):
        new, effects = transition(S.AWAITING_REPLY, E.ESCALATION_DUE)
        assert new == S.ESCALATED
        assert Effect.MARK_ESCALATED in effects
        assert Effect.NOTIFY_ESCALATION in effects
        assert Effect.ARM_TIMERS not in effects

    @pytest.mark.parametrize("state", [S.IDLE, S.ESCALATED])
    @pytest.mark.parametrize("event", [E.REMINDER_DUE, E.ESCALATION_DUE])
    def test_stale_firing_is_noop(self, state, event):
        assert transition(state, event) == (state, ())


class TestCompleted:
    @pytest.mark.parametrize("event", list(NegotiationEvent))
    def test_completed_is_terminal(self, event):
        assert transition(S.COMPLETED, event) == (S.COMPLETED, ())

    def test_is_terminal(self):
        assert is_terminal(S.COMPLETED)
        assert not is_terminal(S.ESCALATED)


class TestTable:
    def test_no_duplicate_transitions(self):
        pairs = [(t.from_state, t.event) for t in TRANSITIONS]
        assert len(pairs) == len(set(pairs))

    def test_valid_events_from_escalated(self):
        assert E.CONCLUDED in valid_events(S.ESCALATED)
        assert E.TURN_SENT in valid_events(S.ESCALATED)


class TestStateFromContext:
    def test_missing_context_is_idle(self):
        assert state_from_context(None) == S.IDLE

    def test_completed_wins(self):
        ctx = ConversationContext(is_completed=True, awaiting_reply=True)
        assert state_from_context(ctx) == S.COMPLETED

    def test_awaiting(self):
        assert state_from_context(ConversationContext(awaiting_reply=True)) == S.AWAITING_REPLY

    def test_escalated(self, clock):
        ctx = ConversationContext(escalated_at=clock.now())
        assert state_from_context(ctx) == S.ESCALATED

    def test_idle(self):
        assert state_from_context(ConversationContext(client_name="Ahmet")) == S.IDLE
