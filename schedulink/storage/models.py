"""SQLAlchemy models for negotiation persistence.

Three tables back the conversation store: the counterpart ``addresses``,
the append-only ``message_logs`` and the ``appointments`` created when a
negotiation concludes. Message log rows are never updated; each row carries
the flag snapshot that was current when it was written.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


class Address(Base):
    """A negotiation counterpart keyed by canonical address."""

    __tablename__ = "addresses"
    __table_args__ = (Index("ix_addresses_jid_unique", "jid", unique=True),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    jid: Mapped[str] = mapped_column(String(length=255), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(length=255))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    messages: Mapped[List["MessageLog"]] = relationship(
        back_populates="address",
        cascade="all, delete-orphan",
        order_by="MessageLog.id",
    )
    appointments: Mapped[List["Appointment"]] = relationship(
        back_populates="address",
        cascade="all, delete-orphan",
        order_by="Appointment.id",
    )


class MessageLog(Base):
    """One append-only log row: a turn, or a system context/status record.

    Attributes:
        text: Turn text, or a JSON document for ``system`` rows.
        direction: ``sent``, ``received`` or ``system``.
        is_completed: Whether the negotiation was concluded at this point.
        awaiting_reply: Whether a reply was pending at this point.
        reminder_sent_at: When the reminder for the pending reply went out.
        escalated_at: When the pending reply was escalated to the operator.
    """

    __tablename__ = "message_logs"
    __table_args__ = (Index("ix_message_logs_address_ts", "address_id", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address_id: Mapped[int] = mapped_column(
        ForeignKey("addresses.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    direction: Mapped[str] = mapped_column(String(length=16), nullable=False)
    timestamp: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    awaiting_reply: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_sent_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))
    escalated_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    address: Mapped[Address] = relationship(back_populates="messages")


class Appointment(Base):
    """Appointment booked when a negotiation concludes."""

    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_address_id", "address_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address_id: Mapped[int] = mapped_column(
        ForeignKey("addresses.id", ondelete="CASCADE"), nullable=False
    )
    client_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    appointment_time: Mapped[str] = mapped_column(String(length=5), nullable=False)
    appointment_date: Mapped[str] = mapped_column(String(length=10), nullable=False)
    status: Mapped[str] = mapped_column(String(length=32), nullable=False, default="confirmed")
    calendar_event_id: Mapped[Optional[str]] = mapped_column(String(length=255))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    address: Mapped[Address] = relationship(back_populates="appointments")


__all__ = ["Base", "Address", "MessageLog", "Appointment"]
