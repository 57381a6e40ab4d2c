"""
services/reminders/service.py
ReminderScheduler: materializes a user's reminder rules for a session.

Saving replaces the whole set for (session, user). Only enabled rules are stored,
so a user with nothing stored sees the default set. Nothing here sends messages;
an external dispatcher polls due_reminders() and flags rows with mark_reminder_sent().
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.scheduling.errors import Forbidden, NotFound, SchedulingFailure
from shared.models.models import (
    ACTIVE_STATUSES,
    CoachingSession,
    ReminderChannel,
    SessionReminder,
)
from shared.utils.timeutils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ReminderRule:
    channel: ReminderChannel
    timing_minutes: int
    message: Optional[str] = None
    enabled: bool = True
    id: Optional[str] = None


DEFAULT_REMINDERS: Tuple[ReminderRule, ...] = (
    ReminderRule(ReminderChannel.EMAIL, 1440, "You have a session tomorrow", True),
    ReminderRule(ReminderChannel.EMAIL, 60, "Your session starts in 1 hour", True),
    ReminderRule(ReminderChannel.SMS, 30, "Your session starts in 30 minutes", False),
    ReminderRule(ReminderChannel.PUSH, 15, "Your session starts in 15 minutes", False),
)


def default_reminders() -> List[ReminderRule]:
    return [
        ReminderRule(
            channel=r.channel,
            timing_minutes=r.timing_minutes,
            message=r.message,
            enabled=r.enabled,
            id=f"default_{r.channel.value}_{r.timing_minutes}",
        )
        for r in DEFAULT_REMINDERS
    ]


def timing_label(minutes: int) -> str:
    """Human offset label, e.g. "1 day before" or "30 minutes before"."""
    if minutes >= 1440:
        days = minutes // 1440
        return f"{days} day{'s' if days > 1 else ''} before"
    if minutes >= 60:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours > 1 else ''} before"
    return f"{minutes} minute{'s' if minutes != 1 else ''} before"


async def _check_participant(
    db: AsyncSession, session_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[SchedulingFailure]:
    result = await db.execute(select(CoachingSession).where(CoachingSession.id == session_id))
    session = result.scalar_one_or_none()
    if session is None:
        return NotFound()
    if not session.is_participant(user_id):
        return Forbidden()
    return None


async def get_reminders(
    db: AsyncSession, session_id: uuid.UUID, user_id: uuid.UUID
) -> Tuple[List[ReminderRule], bool, Optional[SchedulingFailure]]:
    """Stored rules for (session, user), or the defaults. Second item is True for defaults."""
    failure = await _check_participant(db, session_id, user_id)
    if failure is not None:
        return [], False, failure

    result = await db.execute(
        select(SessionReminder)
        .where(SessionReminder.session_id == session_id, SessionReminder.user_id == user_id)
        .order_by(SessionReminder.timing_minutes.desc())
    )
    rows = result.scalars().all()
    if not rows:
        return default_reminders(), True, None

    return [
        ReminderRule(
            channel=row.channel,
            timing_minutes=row.timing_minutes,
            message=row.message,
            enabled=True,
            id=str(row.id),
        )
        for row in rows
    ], False, None


async def set_reminders(
    db: AsyncSession,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    rules: Sequence[ReminderRule],
) -> Tuple[List[SessionReminder], Optional[SchedulingFailure]]:
    """Delete-then-insert of the enabled rules, in one transaction."""
    failure = await _check_participant(db, session_id, user_id)
    if failure is not None:
        return [], failure

    await db.execute(
        delete(SessionReminder).where(
            SessionReminder.session_id == session_id,
            SessionReminder.user_id == user_id,
        )
    )
    stored = [
        SessionReminder(
            session_id=session_id,
            user_id=user_id,
            channel=rule.channel,
            timing_minutes=rule.timing_minutes,
            message=rule.message,
            is_sent=False,
        )
        for rule in rules
        if rule.enabled
    ]
    db.add_all(stored)
    await db.commit()

    logger.info(f"Stored {len(stored)} reminder(s) for session {session_id}, user {user_id}")
    return stored, None


async def due_reminders(db: AsyncSession, now: datetime) -> List[SessionReminder]:
    """Unsent reminders of active sessions whose fire time (start - offset) has passed."""
    result = await db.execute(
        select(SessionReminder, CoachingSession.session_date)
        .join(CoachingSession, SessionReminder.session_id == CoachingSession.id)
        .where(
            SessionReminder.is_sent == False,  # noqa: E712
            CoachingSession.status.in_(ACTIVE_STATUSES),
        )
    )
    due = [
        reminder
        for reminder, session_date in result.all()
        if session_date - timedelta(minutes=reminder.timing_minutes) <= now
    ]
    due.sort(key=lambda r: r.timing_minutes, reverse=True)
    return due


async def mark_reminder_sent(db: AsyncSession, reminder_id: uuid.UUID) -> bool:
    result = await db.execute(
        update(SessionReminder)
        .where(SessionReminder.id == reminder_id, SessionReminder.is_sent == False)  # noqa: E712
        .values(is_sent=True, sent_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1
