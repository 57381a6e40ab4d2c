"""
services/scheduling/cancellation.py
Participant-initiated cancellation. Same participant and notice rules as a reschedule;
no refund or fee logic. The provider room of a cancelled session is released best-effort.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.scheduling.audit import append_history
from services.scheduling.errors import (
    Forbidden,
    InvalidState,
    NotFound,
    PolicyRule,
    PolicyViolation,
    SchedulingFailure,
)
from services.scheduling.reschedule import round_hours
from services.video.daily import DailyClient, VideoProviderError
from shared.models.models import (
    CoachingSession,
    SessionAction,
    SessionStatus,
    TERMINAL_STATUSES,
)
from shared.utils.timeutils import hours_between, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON = "Cancelled by participant"
CANCEL_REFUND_NOTE = "Cancellation does not include a refund."


@dataclass
class CancelResult:
    session_id: Optional[uuid.UUID] = None
    failure: Optional[SchedulingFailure] = None
    history_recorded: bool = False
    room_released: bool = False
    message: str = "Your session has been cancelled."
    refund_note: str = CANCEL_REFUND_NOTE

    @property
    def ok(self) -> bool:
        return self.failure is None


async def cancel_session(
    db: AsyncSession,
    session_id: uuid.UUID,
    requester_id: uuid.UUID,
    now: datetime,
    reason: Optional[str] = None,
    video: Optional[DailyClient] = None,
) -> CancelResult:
    result = await db.execute(select(CoachingSession).where(CoachingSession.id == session_id))
    session = result.scalar_one_or_none()

    if session is None:
        return CancelResult(failure=NotFound())
    if not session.is_participant(requester_id):
        return CancelResult(failure=Forbidden(message="You are not allowed to cancel this session"))
    if session.status == SessionStatus.CANCELLED:
        return CancelResult(failure=InvalidState(message="This session is already cancelled"))
    if session.status == SessionStatus.COMPLETED:
        return CancelResult(failure=InvalidState(message="Completed sessions cannot be cancelled"))

    hours_until = hours_between(session.session_date, now)
    if hours_until < settings.CANCEL_MIN_NOTICE_HOURS:
        return CancelResult(
            failure=PolicyViolation(
                message=(
                    f"Less than {settings.CANCEL_MIN_NOTICE_HOURS} hours remain before your session. "
                    "It can no longer be cancelled."
                ),
                rule=PolicyRule.MIN_NOTICE,
                hours_remaining=round_hours(hours_until),
            )
        )

    old_session_date = session.session_date
    room_name = session.daily_room_name
    reason = reason or DEFAULT_CANCEL_REASON

    updated = await db.execute(
        update(CoachingSession)
        .where(
            CoachingSession.id == session_id,
            CoachingSession.status.notin_(TERMINAL_STATUSES),
        )
        .values(
            status=SessionStatus.CANCELLED,
            cancellation_reason=reason,
            cancelled_at=utc_now(),
            cancelled_by=requester_id,
        )
        .execution_options(synchronize_session=False)
    )
    if updated.rowcount != 1:
        await db.rollback()
        return CancelResult(failure=InvalidState(message="This session is already cancelled"))
    await db.commit()
    logger.info(f"Session {session_id} cancelled by {requester_id}")

    outcome = CancelResult(session_id=session_id)
    outcome.history_recorded = await append_history(
        db, session_id, SessionAction.CANCELLED, requester_id, old_session_date, reason=reason
    )

    if room_name and video is not None:
        try:
            outcome.room_released = await video.delete_room(room_name)
        except VideoProviderError as e:
            logger.warning(f"Room {room_name} for cancelled session {session_id} not released: {e}")
    return outcome
