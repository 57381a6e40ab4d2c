"""
services/reminders/router.py
Per-user reminder preferences for a session.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.reminders.service import ReminderRule, get_reminders, set_reminders, timing_label
from services.scheduling.errors import failure_response
from shared.middleware.auth import get_current_user
from shared.models.models import ReminderChannel, User
from shared.schemas.schemas import (
    ReminderRuleSchema,
    ReminderSettingsRequest,
    ReminderSettingsResponse,
)

router = APIRouter(prefix="/sessions", tags=["Reminders"])


def _to_schema(rule: ReminderRule) -> ReminderRuleSchema:
    return ReminderRuleSchema(
        id=rule.id,
        channel=rule.channel,
        timing_minutes=rule.timing_minutes,
        message=rule.message,
        enabled=rule.enabled,
        label=timing_label(rule.timing_minutes),
    )


@router.get("/{session_id}/reminders", response_model=ReminderSettingsResponse)
async def read_reminders(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Saved reminders, or the default set if the caller never saved any."""
    rules, is_default, failure = await get_reminders(db, session_id, current_user.id)
    if failure:
        return failure_response(failure)
    return ReminderSettingsResponse(
        session_id=session_id,
        reminders=[_to_schema(r) for r in rules],
        is_default=is_default,
    )


@router.put("/{session_id}/reminders", response_model=ReminderSettingsResponse)
async def replace_reminders(
    session_id: UUID,
    data: ReminderSettingsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace the caller's reminders for this session. Disabled entries are dropped."""
    user_id = current_user.id
    rules = [
        ReminderRule(
            channel=ReminderChannel(r.channel),
            timing_minutes=r.timing_minutes,
            message=r.message,
            enabled=r.enabled,
        )
        for r in data.reminders
    ]
    _, failure = await set_reminders(db, session_id, user_id, rules)
    if failure:
        return failure_response(failure)

    stored, is_default, _ = await get_reminders(db, session_id, user_id)
    return ReminderSettingsResponse(
        session_id=session_id,
        reminders=[_to_schema(r) for r in stored],
        is_default=is_default,
    )
