"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the session lifecycle API.
Wire format is camelCase; Python attributes stay snake_case.
"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.models.models import ReminderChannel, SessionAction
from shared.utils.timeutils import normalize_time


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _clock(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return normalize_time(value)
    except ValueError as e:
        raise ValueError("Time must be in HH:MM format") from e


# ── Reschedule ────────────────────────────────────────────────

class RescheduleRequestSchema(BaseSchema):
    session_id: uuid.UUID
    new_date: date
    new_start_time: str = Field(..., max_length=8)
    new_end_time: Optional[str] = Field(None, max_length=8)
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator("new_start_time", "new_end_time")
    @classmethod
    def validate_clock(cls, v: Optional[str]) -> Optional[str]:
        return _clock(v)


class RescheduleResponse(BaseSchema):
    success: bool = True
    message: str
    new_date: datetime
    start_time: str
    end_time: str
    reschedule_count: int
    remaining_reschedules: int
    original_session_date: Optional[datetime]
    refund_note: str


class ReschedulePolicyResponse(BaseSchema):
    can_reschedule: bool
    hours_remaining: Optional[int]
    reschedule_count: int
    remaining_reschedules: int
    reason: Optional[str] = None
    rule: Optional[str] = None


# ── Cancellation ──────────────────────────────────────────────

class CancelRequestSchema(BaseSchema):
    session_id: uuid.UUID
    reason: Optional[str] = Field(None, max_length=1000)


class CancelResponse(BaseSchema):
    success: bool = True
    message: str
    refund_note: str
    room_released: bool


# ── History ───────────────────────────────────────────────────

class SessionHistoryResponse(BaseSchema):
    id: uuid.UUID
    session_id: uuid.UUID
    action_type: SessionAction
    action_by: Optional[uuid.UUID]
    old_session_date: Optional[datetime]
    new_session_date: Optional[datetime]
    reason: Optional[str]
    created_at: Optional[datetime]


# ── Slots ─────────────────────────────────────────────────────

class OpenSlotResponse(BaseSchema):
    consultant_id: uuid.UUID
    slot_date: date = Field(..., serialization_alias="date")
    start_time: str
    end_time: str


# ── Meeting ───────────────────────────────────────────────────

class MeetingEventResponse(BaseSchema):
    session_id: uuid.UUID
    recorded: bool
    at: Optional[datetime]


# ── Reminders ─────────────────────────────────────────────────

class ReminderRuleSchema(BaseSchema):
    id: Optional[str] = None
    channel: ReminderChannel
    timing_minutes: int = Field(..., gt=0, le=10080)  # up to one week ahead
    message: Optional[str] = Field(None, max_length=500)
    enabled: bool = True
    label: Optional[str] = None


class ReminderSettingsRequest(BaseSchema):
    reminders: List[ReminderRuleSchema] = Field(default_factory=list, max_length=20)


class ReminderSettingsResponse(BaseSchema):
    session_id: uuid.UUID
    reminders: List[ReminderRuleSchema]
    is_default: bool
