"""
services/scheduling/conflicts.py
BookingConflictGuard: does an active booking already hold the candidate slot?
Used only by the reschedule engine, always fail-closed.
"""

import uuid
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from services.scheduling.availability import AvailabilityIndex
from shared.utils.timeutils import combine


def slot_key(on_date: date, start_time: str) -> datetime:
    """The comparable slot key stored in sessions.session_date."""
    return combine(on_date, start_time)


class BookingConflictGuard:
    def __init__(self, db: AsyncSession, index: AvailabilityIndex = None):
        self.index = index or AvailabilityIndex(db)

    async def has_conflict(
        self,
        consultant_id: uuid.UUID,
        candidate_at: datetime,
        exclude_session_id: uuid.UUID,
    ) -> bool:
        return await self.index.is_occupied_at(
            consultant_id,
            candidate_at,
            exclude_session_id=exclude_session_id,
            fail_closed=True,
        )
