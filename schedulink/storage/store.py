"""Durable conversation store keyed by canonical address.

The message log is strictly append-only. Every row carries a snapshot of the
negotiation flags (completed, awaiting reply, reminder sent, escalated), so
flag changes are written as ``system`` status rows and the current flags of
an address are simply those of its newest row. A ``system`` context row opens
a negotiation cycle; the conversation context is rebuilt by folding the rows
of the current cycle, never kept as a separately mutable projection.

Blocking ORM work runs on a single dedicated worker thread so callers on the
event loop suspend instead of blocking, and database access stays serialized.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import Engine, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from schedulink.config import settings
from schedulink.schemas.appointment_schema import AppointmentRecord, AppointmentStatus
from schedulink.schemas.conversation_schema import (
    ConversationContext,
    Direction,
    MessageLogEntry,
)
from schedulink.storage.models import Address, Appointment, Base, MessageLog
from schedulink.storage.session import get_engine, get_sessionmaker, session_scope

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTEXT_TYPE = "context"
STATUS_TYPE = "status"

# Context documents always serialize their "type" key first.
_CONTEXT_PREFIX = json.dumps({"type": CONTEXT_TYPE})[:-1]


class PersistenceFailure(Exception):
    """Raised when the backing database cannot complete an operation."""


def _coerce_dt(value: Optional[datetime]) -> Optional[datetime]:
    """Return a tz-aware datetime (SQLite hands back naive UTC values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _payload(row: MessageLog) -> Optional[dict[str, Any]]:
    """Decode the JSON document of a system row, if it has one."""
    if row.direction != Direction.SYSTEM.value:
        return None
    try:
        decoded = json.loads(row.text)
    except (TypeError, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None


def _current_cycle(rows: list[MessageLog]) -> list[MessageLog]:
    """Rows from the most recent context row onward."""
    for idx in range(len(rows) - 1, -1, -1):
        payload = _payload(rows[idx])
        if payload and payload.get("type") == CONTEXT_TYPE:
            return rows[idx:]
    return rows


def _to_entry(row: MessageLog) -> MessageLogEntry:
    return MessageLogEntry(
        text=row.text,
        direction=Direction(row.direction),
        timestamp=_coerce_dt(row.timestamp),
        is_completed=row.is_completed,
        awaiting_reply=row.awaiting_reply,
        reminder_sent_at=_coerce_dt(row.reminder_sent_at),
        escalated_at=_coerce_dt(row.escalated_at),
    )


def _to_appointment(key: str, row: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=row.id,
        address=key,
        client_name=row.client_name,
        time=row.appointment_time,
        date=row.appointment_date,
        status=AppointmentStatus(row.status),
        external_calendar_id=row.calendar_event_id,
        created_at=_coerce_dt(row.created_at),
    )


class ConversationStore:
    """SQLAlchemy-backed store for negotiation history, flags and appointments."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        now: Optional[Callable[[], datetime]] = None,
        timezone_name: Optional[str] = None,
    ) -> None:
        self.database_url = database_url or settings.storage.database_url
        self._engine = engine
        self._factory: Optional[sessionmaker[Session]] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="schedulink-db")
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._tz = ZoneInfo(timezone_name or settings.negotiation.timezone)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def connect(self) -> None:
        """Create tables and verify connectivity.

        Raises:
            PersistenceFailure: If the database cannot be reached.
        """
        await self._run(self._connect_sync)
        logger.info("Database connected")

    async def close(self) -> None:
        if self._engine is not None:
            await self._run(self._engine.dispose)
        self._executor.shutdown(wait=False)

    def _connect_sync(self) -> None:
        if self._engine is None:
            self._engine = get_engine(self.database_url)
        Base.metadata.create_all(self._engine)
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        self._factory = get_sessionmaker(self._engine)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, functools.partial(fn, *args))
        except SQLAlchemyError as exc:
            logger.error("Persistence operation %s failed: %s", getattr(fn, "__name__", fn), exc)
            raise PersistenceFailure(str(exc)) from exc

    def _session(self):
        if self._factory is None:
            raise PersistenceFailure("Store is not connected; call connect() first")
        return session_scope(self._factory)

    # ------------------------------------------------------------------ #
    # Row helpers (worker thread only)
    # ------------------------------------------------------------------ #

    def _find_address(self, session: Session, key: str) -> Optional[Address]:
        return session.scalar(select(Address).where(Address.jid == key))

    def _get_or_create_address(
        self, session: Session, key: str, display_name: Optional[str] = None
    ) -> Address:
        address = self._find_address(session, key)
        if address is None:
            address = Address(jid=key, display_name=display_name, created_at=self._now())
            session.add(address)
            session.flush()
            logger.debug("Address created: %s", key)
        elif display_name and address.display_name != display_name:
            address.display_name = display_name
        return address

    def _rows(self, session: Session, address: Address) -> list[MessageLog]:
        return list(
            session.scalars(
                select(MessageLog)
                .where(MessageLog.address_id == address.id)
                .order_by(MessageLog.timestamp, MessageLog.id)
            )
        )

    def _last_row(self, session: Session, address: Address) -> Optional[MessageLog]:
        return session.scalar(
            select(MessageLog)
            .where(MessageLog.address_id == address.id)
            .order_by(MessageLog.timestamp.desc(), MessageLog.id.desc())
            .limit(1)
        )

    def _append(
        self,
        session: Session,
        address: Address,
        text_value: str,
        direction: Direction,
        **flags: Any,
    ) -> MessageLog:
        """Append one row, carrying the previous flag snapshot forward."""
        last = self._last_row(session, address)
        snapshot: dict[str, Any] = {
            "is_completed": last.is_completed if last else False,
            "awaiting_reply": last.awaiting_reply if last else False,
            "reminder_sent_at": last.reminder_sent_at if last else None,
            "escalated_at": last.escalated_at if last else None,
        }
        snapshot.update(flags)
        row = MessageLog(
            address_id=address.id,
            text=text_value,
            direction=direction.value,
            timestamp=self._now(),
            **snapshot,
        )
        session.add(row)
        session.flush()
        return row

    def _append_status(
        self, session: Session, address: Address, event: str, **flags: Any
    ) -> MessageLog:
        document = json.dumps({"type": STATUS_TYPE, "event": event})
        return self._append(session, address, document, Direction.SYSTEM, **flags)

    def _fold(self, session: Session, address: Address) -> Optional[ConversationContext]:
        rows = self._rows(session, address)
        if not rows:
            return None
        cycle = _current_cycle(rows)

        client_name: Optional[str] = None
        counterpart_name: Optional[str] = None
        awaiting_since: Optional[datetime] = None
        for row in cycle:
            payload = _payload(row)
            if payload is None:
                continue
            if payload.get("type") == CONTEXT_TYPE:
                client_name = payload.get("clientName")
                counterpart_name = payload.get("counterpartName")
            elif payload.get("type") == STATUS_TYPE and payload.get("event") == "awaiting_reply":
                awaiting_since = _coerce_dt(row.timestamp)

        cycle_start = _coerce_dt(cycle[0].timestamp)
        appointment = None
        for candidate in address.appointments:
            if (
                candidate.status == AppointmentStatus.CONFIRMED.value
                and _coerce_dt(candidate.created_at) >= cycle_start
            ):
                appointment = candidate

        last = cycle[-1]
        awaiting = last.awaiting_reply and not last.is_completed
        return ConversationContext(
            client_name=client_name or (appointment.client_name if appointment else None),
            counterpart_name=counterpart_name or address.display_name,
            appointment_time=appointment.appointment_time if appointment else None,
            appointment_date=appointment.appointment_date if appointment else None,
            is_completed=last.is_completed,
            awaiting_reply=awaiting,
            reminder_sent_at=_coerce_dt(last.reminder_sent_at),
            escalated_at=_coerce_dt(last.escalated_at),
            awaiting_since=awaiting_since if awaiting else None,
        )

    # ------------------------------------------------------------------ #
    # Context operations
    # ------------------------------------------------------------------ #

    async def upsert_context(
        self, key: str, client_name: str, counterpart_name: Optional[str] = None
    ) -> ConversationContext:
        """Open a negotiation cycle unless an identical open one exists."""
        return await self._run(self._upsert_context_sync, key, client_name, counterpart_name)

    def _upsert_context_sync(
        self, key: str, client_name: str, counterpart_name: Optional[str]
    ) -> ConversationContext:
        with self._session() as session:
            address = self._get_or_create_address(session, key, counterpart_name)
            current = self._fold(session, address)
            if (
                current is not None
                and not current.is_completed
                and current.client_name == client_name
                and current.counterpart_name == (counterpart_name or address.display_name)
            ):
                return current
            document = json.dumps(
                {
                    "type": CONTEXT_TYPE,
                    "clientName": client_name,
                    "counterpartName": counterpart_name,
                },
                ensure_ascii=False,
            )
            self._append(
                session,
                address,
                document,
                Direction.SYSTEM,
                is_completed=False,
                awaiting_reply=False,
                reminder_sent_at=None,
                escalated_at=None,
            )
            logger.info("Context saved for %s (client: %s)", key, client_name)
            return self._fold(session, address)

    async def get_context(self, key: str) -> Optional[ConversationContext]:
        return await self._run(self._get_context_sync, key)

    def _get_context_sync(self, key: str) -> Optional[ConversationContext]:
        with self._session() as session:
            address = self._find_address(session, key)
            if address is None:
                return None
            return self._fold(session, address)

    async def get_history(self, key: str) -> list[MessageLogEntry]:
        """Return every log row for ``key`` in insertion order."""
        return await self._run(self._get_history_sync, key)

    def _get_history_sync(self, key: str) -> list[MessageLogEntry]:
        with self._session() as session:
            address = self._find_address(session, key)
            if address is None:
                return []
            return [_to_entry(row) for row in self._rows(session, address)]

    async def list_incomplete(self) -> list[str]:
        """Return keys whose current negotiation has not been completed."""
        return await self._run(self._list_incomplete_sync)

    def _list_incomplete_sync(self) -> list[str]:
        latest = (
            select(
                MessageLog.address_id,
                MessageLog.is_completed,
                func.row_number()
                .over(
                    partition_by=MessageLog.address_id,
                    order_by=(MessageLog.timestamp.desc(), MessageLog.id.desc()),
                )
                .label("rank"),
            )
            .subquery()
        )
        opened = (
            select(MessageLog.id)
            .where(
                MessageLog.address_id == Address.id,
                MessageLog.direction == Direction.SYSTEM.value,
                MessageLog.text.startswith(_CONTEXT_PREFIX, autoescape=True),
            )
            .exists()
        )
        query = (
            select(Address.jid)
            .join(latest, latest.c.address_id == Address.id)
            .where(latest.c.rank == 1, latest.c.is_completed.is_(False), opened)
            .order_by(Address.id)
        )
        with self._session() as session:
            return list(session.scalars(query))

    # ------------------------------------------------------------------ #
    # Message log operations
    # ------------------------------------------------------------------ #

    async def append_message(self, key: str, text_value: str, direction: Direction) -> MessageLogEntry:
        return await self._run(self._append_message_sync, key, text_value, direction)

    def _append_message_sync(self, key: str, text_value: str, direction: Direction) -> MessageLogEntry:
        with self._session() as session:
            address = self._get_or_create_address(session, key)
            return _to_entry(self._append(session, address, text_value, direction))

    async def mark_completed(self, key: str) -> None:
        await self._run(self._mark_completed_sync, key)

    def _mark_completed_sync(self, key: str) -> None:
        with self._session() as session:
            address = self._get_or_create_address(session, key)
            last = self._last_row(session, address)
            if last is not None and last.is_completed:
                return
            self._append_status(
                session, address, "completed", is_completed=True, awaiting_reply=False
            )
            logger.info("Conversation with %s marked completed", key)

    async def mark_awaiting_reply(self, key: str) -> None:
        await self._run(self._mark_awaiting_sync, key)

    def _mark_awaiting_sync(self, key: str) -> None:
        with self._session() as session:
            address = self._get_or_create_address(session, key)
            # A new waiting period starts with no reminder or escalation recorded.
            self._append_status(
                session,
                address,
                "awaiting_reply",
                awaiting_reply=True,
                reminder_sent_at=None,
                escalated_at=None,
            )

    async def clear_awaiting_reply(self, key: str) -> None:
        await self._run(self._clear_awaiting_sync, key)

    def _clear_awaiting_sync(self, key: str) -> None:
        with self._session() as session:
            address = self._get_or_create_address(session, key)
            last = self._last_row(session, address)
            if last is None or not last.awaiting_reply:
                return
            self._append_status(session, address, "reply_received", awaiting_reply=False)

    async def mark_reminder_sent(self, key: str) -> None:
        await self._run(self._mark_reminder_sync, key)

    def _mark_reminder_sync(self, key: str) -> None:
        with self._session() as session:
            address = self._get_or_create_address(session, key)
            self._append_status(session, address, "reminder_sent", reminder_sent_at=self._now())

    async def mark_escalated(self, key: str) -> None:
        await self._run(self._mark_escalated_sync, key)

    def _mark_escalated_sync(self, key: str) -> None:
        with self._session() as session:
            address = self._get_or_create_address(session, key)
            self._append_status(
                session, address, "escalated", escalated_at=self._now(), awaiting_reply=False
            )

    # ------------------------------------------------------------------ #
    # Appointments
    # ------------------------------------------------------------------ #

    async def create_appointment(
        self,
        key: str,
        client_name: str,
        time: str,
        date: Optional[str] = None,
        calendar_event_id: Optional[str] = None,
    ) -> AppointmentRecord:
        return await self._run(
            self._create_appointment_sync, key, client_name, time, date, calendar_event_id
        )

    def _create_appointment_sync(
        self,
        key: str,
        client_name: str,
        time: str,
        date: Optional[str],
        calendar_event_id: Optional[str],
    ) -> AppointmentRecord:
        with self._session() as session:
            address = self._get_or_create_address(session, key)
            row = Appointment(
                address_id=address.id,
                client_name=client_name,
                appointment_time=time,
                appointment_date=date or self._now().astimezone(self._tz).date().isoformat(),
                status=AppointmentStatus.CONFIRMED.value,
                calendar_event_id=calendar_event_id,
                created_at=self._now(),
            )
            session.add(row)
            session.flush()
            logger.info("Appointment created for %s at %s (%s)", client_name, time, key)
            return _to_appointment(key, row)

    async def update_appointment_status(
        self, appointment_id: int, status: AppointmentStatus
    ) -> Optional[AppointmentRecord]:
        return await self._run(self._update_appointment_status_sync, appointment_id, status)

    def _update_appointment_status_sync(
        self, appointment_id: int, status: AppointmentStatus
    ) -> Optional[AppointmentRecord]:
        with self._session() as session:
            row = session.get(Appointment, appointment_id)
            if row is None:
                return None
            row.status = AppointmentStatus(status).value
            session.flush()
            return _to_appointment(row.address.jid, row)

    async def list_appointments(self, key: str) -> list[AppointmentRecord]:
        return await self._run(self._list_appointments_sync, key)

    def _list_appointments_sync(self, key: str) -> list[AppointmentRecord]:
        with self._session() as session:
            address = self._find_address(session, key)
            if address is None:
                return []
            return [_to_appointment(key, row) for row in address.appointments]
