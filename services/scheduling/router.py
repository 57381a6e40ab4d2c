"""
services/scheduling/router.py
Session scheduling endpoints: reschedule, cancel, history, admission and open slots.
Expected failures come back as {"success": false, "error", "code", ...} with their
own status code; anything else falls through to the global 500 handler.
"""

import logging
from datetime import date, datetime
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.scheduling.admission import session_admission
from services.scheduling.audit import list_history
from services.scheduling.availability import AvailabilityIndex
from services.scheduling.cancellation import cancel_session
from services.scheduling.errors import (
    Forbidden,
    InvalidState,
    NotFound,
    PolicyViolation,
    SchedulingFailure,
    failure_response,
)
from services.scheduling.reschedule import ReschedulePolicyEngine, RescheduleRequest
from services.video.daily import DailyClient, get_video_client
from shared.middleware.auth import get_current_user
from shared.models.models import CoachingSession, TERMINAL_STATUSES, User
from shared.schemas.schemas import (
    CancelRequestSchema,
    CancelResponse,
    OpenSlotResponse,
    ReschedulePolicyResponse,
    RescheduleRequestSchema,
    RescheduleResponse,
    SessionHistoryResponse,
)
from shared.utils.timeutils import get_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])
consultants_router = APIRouter(prefix="/consultants", tags=["Availability"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_participant_session(
    session_id: UUID, user_id: UUID, db: AsyncSession
) -> Tuple[Optional[CoachingSession], Optional[SchedulingFailure]]:
    result = await db.execute(select(CoachingSession).where(CoachingSession.id == session_id))
    session = result.scalar_one_or_none()
    if not session:
        return None, NotFound()
    if not session.is_participant(user_id):
        return None, Forbidden()
    return session, None


# ── Reschedule ────────────────────────────────────────────────

@router.post("/reschedule", response_model=RescheduleResponse)
async def reschedule_session(
    data: RescheduleRequestSchema,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    now: datetime = Depends(get_now),
):
    """
    Move a session to a new date/time. Rejected when:
    - the session is missing (404) or the caller isn't a participant (403)
    - it is cancelled or completed, or the new time is in the past
    - less than 24h remain before the current start (hoursRemaining in body)
    - the session was already rescheduled twice (rescheduleCount in body)
    - the consultant already has an active session at the new time
    """
    engine = ReschedulePolicyEngine(db, cache=RedisCache(redis))
    result = await engine.reschedule(
        RescheduleRequest(
            session_id=data.session_id,
            requester_id=current_user.id,
            new_date=data.new_date,
            new_start_time=data.new_start_time,
            new_end_time=data.new_end_time,
            reason=data.reason,
        ),
        now,
    )
    if not result.ok:
        return failure_response(result.failure)

    moved = result.rescheduled
    return RescheduleResponse(
        message=moved.message,
        new_date=moved.new_session_date,
        start_time=moved.start_time,
        end_time=moved.end_time,
        reschedule_count=moved.reschedule_count,
        remaining_reschedules=moved.remaining_reschedules,
        original_session_date=moved.original_session_date,
        refund_note=moved.refund_note,
    )


@router.get("/{session_id}/reschedule-policy", response_model=ReschedulePolicyResponse)
async def get_reschedule_policy(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Whether the session can still be moved, and why not."""
    eligibility = await ReschedulePolicyEngine(db).check_eligibility(session_id, current_user.id, now)
    if isinstance(eligibility.failure, (NotFound, Forbidden)):
        return failure_response(eligibility.failure)

    failure = eligibility.failure
    return ReschedulePolicyResponse(
        can_reschedule=eligibility.can_reschedule,
        hours_remaining=eligibility.hours_remaining,
        reschedule_count=eligibility.reschedule_count,
        remaining_reschedules=eligibility.remaining_reschedules,
        reason=failure.message if failure else None,
        rule=failure.rule.value if isinstance(failure, PolicyViolation) else None,
    )


# ── Cancellation ──────────────────────────────────────────────

@router.post("/cancel", response_model=CancelResponse)
async def cancel(
    data: CancelRequestSchema,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    video: DailyClient = Depends(get_video_client),
    now: datetime = Depends(get_now),
):
    result = await cancel_session(
        db,
        data.session_id,
        current_user.id,
        now,
        reason=data.reason,
        video=video,
    )
    if not result.ok:
        return failure_response(result.failure)
    return CancelResponse(
        message=result.message,
        refund_note=result.refund_note,
        room_released=result.room_released,
    )


# ── History & Admission ───────────────────────────────────────

@router.get("/{session_id}/history", response_model=List[SessionHistoryResponse])
async def get_session_history(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Reschedule/cancel trail, newest first."""
    _, failure = await _get_participant_session(session_id, current_user.id, db)
    if failure:
        return failure_response(failure)
    entries = await list_history(db, session_id)
    return [
        SessionHistoryResponse(
            id=e.id,
            session_id=e.session_id,
            action_type=e.action_type,
            action_by=e.action_by,
            old_session_date=e.old_session_date,
            new_session_date=e.new_session_date,
            reason=e.reason,
            created_at=e.created_at,
        )
        for e in entries
    ]


@router.get("/{session_id}/admission")
async def get_admission(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Current admission state. Recomputed on every call from the wall clock;
    the page polls this (or computes it locally) at least once a second.
    """
    session, failure = await _get_participant_session(session_id, current_user.id, db)
    if failure:
        return failure_response(failure)
    if session.status in TERMINAL_STATUSES:
        return failure_response(InvalidState(message=f"This session is {session.status.value}"))
    return session_admission(session, now).to_response()


# ── Availability ──────────────────────────────────────────────

@consultants_router.get("/{consultant_id}/slots", response_model=List[OpenSlotResponse])
async def list_open_slots(
    consultant_id: UUID,
    on_date: date = Query(..., alias="date"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Offerable slots for a consultant on a date. Store errors degrade to showing the slot."""
    slots = await AvailabilityIndex(db).open_slots(consultant_id, on_date)
    return [
        OpenSlotResponse(
            consultant_id=s.consultant_id,
            slot_date=s.slot_date,
            start_time=s.start_time,
            end_time=s.end_time,
        )
        for s in slots
    ]
