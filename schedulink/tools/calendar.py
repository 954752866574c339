"""
Calendar booking for concluded negotiations.

In production this would integrate with a hosted calendar (Google Calendar,
CalDAV, Outlook). ``InMemoryCalendar`` keeps events in a process-local dict
and is used by the demo and the tests.
"""

import logging
import uuid
from datetime import date as date_cls
from datetime import datetime, timedelta
from typing import Optional, Protocol, TypedDict
from zoneinfo import ZoneInfo

from schedulink.config import settings

logger = logging.getLogger(__name__)


class CalendarError(Exception):
    """Raised when the calendar rejects or cannot store an event."""


class CalendarEvent(TypedDict):
    """Event record stored in the calendar."""

    event_id: str
    summary: str
    start: str
    end: str
    status: str


class CalendarBooker(Protocol):
    async def create_event(self, start: datetime, end: datetime, summary: str) -> str:
        """Create an event and return its external identifier."""
        ...


def build_event_window(
    time: str,
    date: Optional[str] = None,
    duration_minutes: Optional[int] = None,
    timezone_name: Optional[str] = None,
    today: Optional[date_cls] = None,
) -> tuple[datetime, datetime]:
    """Turn an agreed ``HH:MM`` (and optional ISO date) into a start/end pair.

    Without a date the event is placed on the current day in the
    configured timezone.

    Raises:
        CalendarError: If the time or date cannot be parsed.
    """
    tz = ZoneInfo(timezone_name or settings.negotiation.timezone)
    minutes = duration_minutes or settings.negotiation.appointment_duration_minutes
    try:
        hours, mins = (int(part) for part in time.split(":", 1))
        day = date_cls.fromisoformat(date) if date else (today or datetime.now(tz).date())
        start = datetime(day.year, day.month, day.day, hours, mins, tzinfo=tz)
    except ValueError as exc:
        raise CalendarError(f"Cannot build event window for {date or 'today'} {time}: {exc}") from exc
    return start, start + timedelta(minutes=minutes)


def event_summary(counterpart_name: Optional[str], service_name: Optional[str] = None) -> str:
    service = service_name or settings.negotiation.service_name
    if counterpart_name:
        return f"{service.capitalize()} - {counterpart_name}"
    return service.capitalize()


class InMemoryCalendar:
    """Process-local calendar. Set ``fail`` to simulate an unavailable backend."""

    def __init__(self) -> None:
        self._events: dict[str, CalendarEvent] = {}
        self.fail = False

    async def create_event(self, start: datetime, end: datetime, summary: str) -> str:
        if self.fail:
            raise CalendarError("Calendar backend unavailable")
        if end <= start:
            raise CalendarError("Event must end after it starts")

        event_id = f"EV-{uuid.uuid4().hex[:6].upper()}"
        self._events[event_id] = {
            "event_id": event_id,
            "summary": summary,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "status": "confirmed",
        }
        logger.info("Calendar event created: %s (%s at %s)", event_id, summary, start.isoformat())
        return event_id

    def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        return self._events.get(event_id)

    def list_events(self) -> list[CalendarEvent]:
        return list(self._events.values())

    def reset(self) -> None:
        """Clear all events. Used by test fixtures for isolation."""
        self._events.clear()
        self.fail = False
