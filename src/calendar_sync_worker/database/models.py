"""SQLAlchemy database models."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


def _uuid() -> str:
    return str(uuid.uuid4())


class CalendarCredentialsMixin:
    """OAuth credential columns shared by staff and clients."""

    # Google Calendar (token refresh handled by the Google client library)
    google_calendar_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    google_calendar_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Outlook Calendar (short-lived tokens, refreshed by the worker)
    outlook_calendar_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outlook_refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outlook_calendar_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    outlook_token_expiry: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class Staff(CalendarCredentialsMixin, Base):
    """Staff member database model."""

    __tablename__ = "staff"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid, index=True)

    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    @property
    def full_name(self) -> str:
        return self.display_name or f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Staff(id={self.id}, name={self.full_name})>"


class Client(CalendarCredentialsMixin, Base):
    """Client database model."""

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid, index=True)

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name={self.full_name})>"


class Service(Base):
    """Bookable salon service."""

    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class AppointmentService(Base):
    """Service booked on an appointment; ``position`` keeps the booking order."""

    __tablename__ = "appointment_services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    appointment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("services.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    service: Mapped["Service"] = relationship("Service")


class Appointment(Base):
    """Appointment database model."""

    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid, index=True)

    staff_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("staff.id"), nullable=False, index=True
    )
    client_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("clients.id"), nullable=True, index=True
    )

    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    scheduled_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default="booked", nullable=False
    )  # booked, confirmed, cancelled, completed, no_show

    # Provider event ids, one per sync target
    staff_google_event_id: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    staff_outlook_event_id: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    client_google_event_id: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    client_outlook_event_id: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    services: Mapped[list["AppointmentService"]] = relationship(
        "AppointmentService",
        order_by="AppointmentService.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, staff_id={self.staff_id}, start={self.scheduled_start})>"
