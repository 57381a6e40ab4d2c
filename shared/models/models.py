"""
shared/models/models.py
All SQLAlchemy ORM models for the session lifecycle engine.
UUID primary keys throughout; portable column types so PostgreSQL and SQLite share one schema.
"""

import uuid
from datetime import date, datetime
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    CLIENT = "CLIENT"
    CONSULTANT = "CONSULTANT"
    ADMIN = "ADMIN"


class SessionStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that occupy a consultant's slot
ACTIVE_STATUSES = (SessionStatus.PENDING, SessionStatus.CONFIRMED)
# Statuses whose scheduling fields are frozen
TERMINAL_STATUSES = (SessionStatus.CANCELLED, SessionStatus.COMPLETED)


class ReminderChannel(str, PyEnum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class SessionAction(str, PyEnum):
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


def _enum_values(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ── Models ────────────────────────────────────────────────────

class User(TimestampMixin, Base):
    """Account of a client or consultant. Provisioned by the identity provider."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole), nullable=False, default=UserRole.CLIENT
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("ix_users_role", "role"),)

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.email

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class CoachingSession(TimestampMixin, Base):
    """
    A scheduled engagement between a client and a consultant.

    session_date holds the combined local start instant (date + start_time) and is
    the slot key compared by the conflict guard. Video fields are written by the
    room provisioner; daily_room_url is set once and never overwritten.
    """
    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    consultant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )

    # Schedule (local wall clock)
    session_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)   # "10:00"
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)     # "11:00"
    original_session_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Lifecycle
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
        default=SessionStatus.PENDING,
    )
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reschedule_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rescheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rescheduled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # Video
    daily_room_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    daily_room_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    daily_meeting_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    daily_meeting_token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    meeting_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    meeting_ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    client: Mapped["User"] = relationship(foreign_keys=[client_id])
    consultant: Mapped["User"] = relationship(foreign_keys=[consultant_id])
    reminders: Mapped[List["SessionReminder"]] = relationship(back_populates="session")
    history: Mapped[List["SessionHistory"]] = relationship(back_populates="session")

    __table_args__ = (
        Index("ix_sessions_client_id", "client_id"),
        Index("ix_sessions_consultant_id", "consultant_id"),
        Index("ix_sessions_status", "status"),
        # One active session per consultant slot; the losing writer of a race gets an IntegrityError
        Index(
            "uq_sessions_consultant_active_slot",
            "consultant_id",
            "session_date",
            unique=True,
            postgresql_where=text("status IN ('pending', 'confirmed')"),
            sqlite_where=text("status IN ('pending', 'confirmed')"),
        ),
    )

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.client_id, self.consultant_id)

    @property
    def scheduled_date(self) -> date:
        return self.session_date.date()

    def __repr__(self) -> str:
        return f"<CoachingSession {self.id} {self.session_date.isoformat()} ({self.status})>"


class TimeSlot(Base):
    """
    A consultant's offered availability. Maintained by availability management;
    is_booked is kept in sync by the booking flow.
    """
    __tablename__ = "time_slots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    consultant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    slot_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_booked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_time_slots_consultant_date", "consultant_id", "date"),
    )


class SessionReminder(Base):
    """A user's reminder rule for one session. Dispatched and flagged by the notifier."""
    __tablename__ = "session_reminders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[ReminderChannel] = mapped_column(
        Enum(ReminderChannel, values_callable=_enum_values, native_enum=False, length=10),
        nullable=False,
    )
    timing_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    session: Mapped["CoachingSession"] = relationship(back_populates="reminders")

    __table_args__ = (
        Index("ix_session_reminders_session_user", "session_id", "user_id"),
        Index("ix_session_reminders_unsent", "is_sent"),
    )


class SessionHistory(Base):
    """Append-only log of reschedules and cancellations."""
    __tablename__ = "session_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sessions.id"), nullable=False
    )
    action_type: Mapped[SessionAction] = mapped_column(
        Enum(SessionAction, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
    )
    action_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True
    )
    old_session_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    new_session_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    session: Mapped["CoachingSession"] = relationship(back_populates="history")

    __table_args__ = (Index("ix_session_history_session_id", "session_id"),)
