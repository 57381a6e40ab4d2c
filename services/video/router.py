"""
services/video/router.py
Video room endpoints: join (admission + provisioning) and meeting start/end timestamps.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.scheduling.errors import failure_response
from services.video.daily import DailyClient, get_video_client
from services.video.rooms import MeetingEvent, MeetingRoomProvisioner
from shared.middleware.auth import get_current_user
from shared.models.models import User
from shared.schemas.schemas import MeetingEventResponse
from shared.utils.timeutils import get_now

router = APIRouter(prefix="/sessions", tags=["Video"])


def _event_response(event: MeetingEvent):
    if not event.ok:
        return failure_response(event.failure)
    return MeetingEventResponse(session_id=event.session_id, recorded=event.recorded, at=event.at)


@router.post("/{session_id}/join")
async def join_session(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    video: DailyClient = Depends(get_video_client),
    now: datetime = Depends(get_now),
):
    """
    Room URL and access token for the caller. Only allowed inside the admission
    window (15 minutes before start until the end). A video provider outage does
    not fail the call: the response is marked degraded and carries warnings.
    """
    result = await MeetingRoomProvisioner(db, video).join(
        session_id, current_user.id, current_user.display_name, now
    )
    if not result.ok:
        return failure_response(result.failure)
    return result.join.to_response()


@router.post("/{session_id}/meeting/start", response_model=MeetingEventResponse)
async def meeting_started(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    video: DailyClient = Depends(get_video_client),
    now: datetime = Depends(get_now),
):
    event = await MeetingRoomProvisioner(db, video).record_meeting_started(session_id, current_user.id, now)
    return _event_response(event)


@router.post("/{session_id}/meeting/end", response_model=MeetingEventResponse)
async def meeting_ended(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    video: DailyClient = Depends(get_video_client),
):
    event = await MeetingRoomProvisioner(db, video).record_meeting_ended(session_id, current_user.id)
    return _event_response(event)
