from schedulink.tools.calendar import (
    CalendarBooker,
    CalendarError,
    InMemoryCalendar,
    build_event_window,
    event_summary,
)
from schedulink.tools.notifications import (
    LoggingNotifier,
    NotificationFailure,
    NotificationSink,
    TelegramNotifier,
    build_notifier,
    notify_safely,
)

__all__ = [
    "CalendarBooker", "CalendarError", "InMemoryCalendar", "build_event_window", "event_summary",
    "NotificationSink", "NotificationFailure", "TelegramNotifier", "LoggingNotifier",
    "build_notifier", "notify_safely",
]
