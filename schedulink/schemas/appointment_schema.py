"""Appointment data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AppointmentStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class AppointmentRecord(BaseModel):
    """Appointment created once per concluded negotiation."""

    id: int
    address: str
    client_name: str
    time: str
    date: str
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    external_calendar_id: Optional[str] = None
    created_at: Optional[datetime] = None
