"""Negotiation records exchanged between the store, driver and orchestrator."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Direction(str, Enum):
    SENT = "sent"
    RECEIVED = "received"
    SYSTEM = "system"


class ConversationContext(BaseModel):
    """Current view of one negotiation, folded from its message log."""

    client_name: Optional[str] = None
    counterpart_name: Optional[str] = None
    appointment_time: Optional[str] = None
    appointment_date: Optional[str] = None
    is_completed: bool = False
    awaiting_reply: bool = False
    reminder_sent_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
    awaiting_since: Optional[datetime] = None


class MessageLogEntry(BaseModel):
    """A single row of the append-only message log."""

    text: str
    direction: Direction
    timestamp: datetime
    is_completed: bool = False
    awaiting_reply: bool = False
    reminder_sent_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None


class InboundMessage(BaseModel):
    """A message received from a counterpart on the transport."""

    address: str
    text: str


class StartCommand(BaseModel):
    """Operator request to open a negotiation with a counterpart."""

    address: str
    client_name: str = Field(min_length=1)
    counterpart_name: Optional[str] = None
