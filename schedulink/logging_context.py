"""Conversation-key logging context for tracing one negotiation across modules.

Provides a logger that attaches the canonical address of the negotiation
being handled to every log message, so a single counterpart's journey through
the driver, store, scheduler and notifier can be followed in the logs.

Usage:
    from schedulink.logging_context import get_conversation_logger, set_conversation_key

    set_conversation_key("905551234567@s.whatsapp.net")
    logger = get_conversation_logger(__name__)
    logger.info("Processing reply")

The root handlers installed by ``load_config`` print the key as
``%(conversation_key)s``.
"""

import logging
from contextvars import ContextVar
from typing import Optional

_conversation_key: ContextVar[str] = ContextVar("conversation_key", default="-")


def set_conversation_key(key: str) -> None:
    """Set the conversation key for the current async context."""
    _conversation_key.set(key)


def get_conversation_key() -> str:
    """Retrieve the current conversation key."""
    return _conversation_key.get()


class ConversationKeyFilter(logging.Filter):
    """Injects conversation_key into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.conversation_key = _conversation_key.get()  # type: ignore[attr-defined]
        return True


def get_conversation_logger(name: str) -> logging.Logger:
    """Return a logger with the ConversationKeyFilter attached.

    The filter adds ``conversation_key`` to each record so formatters can
    include ``%(conversation_key)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, ConversationKeyFilter) for f in logger.filters):
        logger.addFilter(ConversationKeyFilter())
    return logger


def install_conversation_filter(logger: Optional[logging.Logger] = None) -> None:
    """Attach the filter to every handler of ``logger`` (the root by default).

    Handler-level filters also cover records from loggers that were not
    created through ``get_conversation_logger``, such as SQLAlchemy or httpx.
    """
    target = logger or logging.getLogger()
    for handler in target.handlers:
        if not any(isinstance(f, ConversationKeyFilter) for f in handler.filters):
            handler.addFilter(ConversationKeyFilter())
