"""
services/scheduling/reschedule.py
ReschedulePolicyEngine: validates and applies a move of an existing session.

Preconditions, checked in order, each a distinct outcome:
    1. session exists                         → NotFound
    2. requester is client or consultant      → Forbidden
    3. session not cancelled / completed      → InvalidState
    4. ≥ RESCHEDULE_MIN_NOTICE_HOURS to the
       *current* start (unrounded gate)       → PolicyViolation(min_notice)
    5. reschedule_count < MAX_RESCHEDULES     → PolicyViolation(max_reschedules)
    6. target slot not held by another
       active session of the consultant       → Conflict

The write is a single conditional UPDATE keyed on the observed reschedule_count, so
two racing requests cannot both spend the same allowance, and the partial unique
index on (consultant_id, session_date) makes the losing writer of a slot race fail
with Conflict. The history append runs afterwards and never unwinds the move.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import RedisCache
from config.settings import settings
from services.scheduling.audit import append_history
from services.scheduling.conflicts import BookingConflictGuard, slot_key
from services.scheduling.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    PolicyRule,
    PolicyViolation,
    SchedulingFailure,
)
from shared.models.models import (
    CoachingSession,
    SessionAction,
    SessionStatus,
    TERMINAL_STATUSES,
)
from shared.utils.timeutils import combine, hours_between, normalize_time, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RESCHEDULE_REASON = "Rescheduled by participant"
REFUND_NOTE = "The session is not cancelled. No refund is issued for a reschedule."


def round_hours(hours: float) -> int:
    """Half-up rounding for user-facing hour counts."""
    return math.floor(hours + 0.5)


@dataclass
class RescheduleRequest:
    session_id: uuid.UUID
    requester_id: uuid.UUID
    new_date: date
    new_start_time: str
    new_end_time: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class Rescheduled:
    session_id: uuid.UUID
    new_session_date: datetime
    start_time: str
    end_time: str
    reschedule_count: int
    remaining_reschedules: int
    original_session_date: Optional[datetime]
    history_recorded: bool
    message: str = "Your session has been rescheduled."
    refund_note: str = REFUND_NOTE


@dataclass
class RescheduleResult:
    rescheduled: Optional[Rescheduled] = None
    failure: Optional[SchedulingFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class RescheduleEligibility:
    can_reschedule: bool
    hours_remaining: Optional[int]
    reschedule_count: int
    remaining_reschedules: int
    failure: Optional[SchedulingFailure] = None


class ReschedulePolicyEngine:
    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[RedisCache] = None,
        guard: Optional[BookingConflictGuard] = None,
        min_notice_hours: int = settings.RESCHEDULE_MIN_NOTICE_HOURS,
        max_reschedules: int = settings.MAX_RESCHEDULES,
    ):
        self.db = db
        self.cache = cache
        self.guard = guard or BookingConflictGuard(db)
        self.min_notice_hours = min_notice_hours
        self.max_reschedules = max_reschedules

    # ── Validation ────────────────────────────────────────────

    async def _load(self, session_id: uuid.UUID) -> Optional[CoachingSession]:
        result = await self.db.execute(
            select(CoachingSession).where(CoachingSession.id == session_id)
        )
        return result.scalar_one_or_none()

    def remaining(self, session: CoachingSession) -> int:
        return max(0, self.max_reschedules - (session.reschedule_count or 0))

    def _check_policy(
        self,
        session: Optional[CoachingSession],
        requester_id: uuid.UUID,
        now: datetime,
    ) -> Optional[SchedulingFailure]:
        if session is None:
            return NotFound()
        if not session.is_participant(requester_id):
            return Forbidden(message="You are not allowed to reschedule this session")
        if session.status == SessionStatus.CANCELLED:
            return InvalidState(message="Cancelled sessions cannot be rescheduled")
        if session.status == SessionStatus.COMPLETED:
            return InvalidState(message="Completed sessions cannot be rescheduled")

        hours_until = hours_between(session.session_date, now)
        if hours_until < self.min_notice_hours:
            return PolicyViolation(
                message=(
                    f"Less than {self.min_notice_hours} hours remain before your session. "
                    "It can no longer be rescheduled."
                ),
                rule=PolicyRule.MIN_NOTICE,
                hours_remaining=round_hours(hours_until),
            )

        count = session.reschedule_count or 0
        if count >= self.max_reschedules:
            return PolicyViolation(
                message=f"This session has reached the maximum number of reschedules ({self.max_reschedules})",
                rule=PolicyRule.MAX_RESCHEDULES,
                reschedule_count=count,
            )
        return None

    async def check_eligibility(
        self,
        session_id: uuid.UUID,
        requester_id: uuid.UUID,
        now: datetime,
    ) -> RescheduleEligibility:
        """Preview of steps 1-5 for display; performs no writes."""
        session = await self._load(session_id)
        failure = self._check_policy(session, requester_id, now)
        if session is None or isinstance(failure, Forbidden):
            return RescheduleEligibility(False, None, 0, 0, failure)

        return RescheduleEligibility(
            can_reschedule=failure is None,
            hours_remaining=round_hours(hours_between(session.session_date, now)),
            reschedule_count=session.reschedule_count or 0,
            remaining_reschedules=self.remaining(session),
            failure=failure,
        )

    # ── Slot claim ────────────────────────────────────────────

    async def _claim_slot(self, consultant_id: uuid.UUID, slot_at: datetime, session_id: uuid.UUID) -> bool:
        """
        Short-lived Redis claim on the target slot. Returns False only when another
        session holds it; an unreachable Redis is logged and treated as claimed.
        """
        if self.cache is None:
            return True
        try:
            if await self.cache.lock_slot(str(consultant_id), slot_at.isoformat(), str(session_id)):
                return True
            holder = await self.cache.get_slot_lock(str(consultant_id), slot_at.isoformat())
            return holder == str(session_id)
        except RedisError as e:
            logger.warning(f"Slot claim unavailable for session {session_id}, relying on unique index: {e}")
            return True

    async def _release_slot(self, consultant_id: uuid.UUID, slot_at: datetime) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.release_slot(str(consultant_id), slot_at.isoformat())
        except RedisError as e:
            logger.warning(f"Slot claim release failed for {consultant_id} at {slot_at.isoformat()}: {e}")

    # ── Reschedule ────────────────────────────────────────────

    def _resolve_end_time(self, session: CoachingSession, new_start: datetime, new_end_time: Optional[str]) -> str:
        if new_end_time:
            return normalize_time(new_end_time)
        # Keep the session's length when no end is given
        old_start = combine(session.scheduled_date, session.start_time)
        old_end = combine(session.scheduled_date, session.end_time)
        if old_end <= old_start:
            old_end += timedelta(days=1)
        return (new_start + (old_end - old_start)).strftime("%H:%M")

    async def reschedule(self, request: RescheduleRequest, now: datetime) -> RescheduleResult:
        session = await self._load(request.session_id)
        failure = self._check_policy(session, request.requester_id, now)
        if failure is not None:
            return RescheduleResult(failure=failure)

        new_start_time = normalize_time(request.new_start_time)
        new_at = slot_key(request.new_date, new_start_time)
        if new_at <= now:
            return RescheduleResult(failure=InvalidState(message="The new session time must be in the future"))

        if await self.guard.has_conflict(session.consultant_id, new_at, exclude_session_id=session.id):
            return RescheduleResult(failure=Conflict())

        if not await self._claim_slot(session.consultant_id, new_at, session.id):
            return RescheduleResult(failure=Conflict())

        session_id = session.id
        consultant_id = session.consultant_id
        observed_count = session.reschedule_count or 0
        old_session_date = session.session_date
        reason = request.reason or DEFAULT_RESCHEDULE_REASON
        values = {
            "session_date": new_at,
            "start_time": new_start_time,
            "end_time": self._resolve_end_time(session, new_at, request.new_end_time),
            "reschedule_count": observed_count + 1,
            "reschedule_reason": reason,
            "rescheduled_at": utc_now(),
            "rescheduled_by": request.requester_id,
        }
        if observed_count == 0:
            values["original_session_date"] = old_session_date

        try:
            result = await self.db.execute(
                update(CoachingSession)
                .where(
                    CoachingSession.id == session_id,
                    CoachingSession.reschedule_count == observed_count,
                    CoachingSession.status.notin_(TERMINAL_STATUSES),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                logger.info(f"Reschedule of session {session_id} lost a concurrent update")
                return RescheduleResult(
                    failure=Conflict(message="The session was changed by another request. Please try again.")
                )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(f"Reschedule of session {session_id} lost the race for {new_at.isoformat()}")
            return RescheduleResult(failure=Conflict())
        finally:
            await self._release_slot(consultant_id, new_at)

        await self.db.refresh(session)
        logger.info(
            f"Session {session.id} rescheduled {old_session_date.isoformat()} → {new_at.isoformat()} "
            f"by {request.requester_id} ({session.reschedule_count}/{self.max_reschedules})"
        )

        # Snapshot before the history append: a failed append rolls back and expires the row
        rescheduled = Rescheduled(
            session_id=session.id,
            new_session_date=session.session_date,
            start_time=session.start_time,
            end_time=session.end_time,
            reschedule_count=session.reschedule_count,
            remaining_reschedules=self.remaining(session),
            original_session_date=session.original_session_date,
            history_recorded=False,
        )
        rescheduled.history_recorded = await append_history(
            self.db,
            rescheduled.session_id,
            SessionAction.RESCHEDULED,
            request.requester_id,
            old_session_date,
            new_at,
            reason,
        )
        return RescheduleResult(rescheduled=rescheduled)
