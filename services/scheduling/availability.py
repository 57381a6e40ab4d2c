"""
services/scheduling/availability.py
AvailabilityIndex: answers whether a consultant's slot is open.

Two read paths with different failure handling:
- reschedule path (fail closed): a store error means "occupied", so a legitimate move
  may be refused but a consultant is never double-booked.
- scheduling read path (fail open): a store error is logged and the slot is offered.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import ACTIVE_STATUSES, CoachingSession, TimeSlot
from shared.utils.timeutils import combine

logger = logging.getLogger(__name__)


@dataclass
class OpenSlot:
    consultant_id: uuid.UUID
    slot_date: date
    start_time: str
    end_time: str


class AvailabilityIndex:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _occupying_session_ids(
        self,
        consultant_id: uuid.UUID,
        slot_at: datetime,
        exclude_session_id: Optional[uuid.UUID] = None,
    ) -> List[uuid.UUID]:
        query = select(CoachingSession.id).where(
            CoachingSession.consultant_id == consultant_id,
            CoachingSession.session_date == slot_at,
            CoachingSession.status.in_(ACTIVE_STATUSES),
        )
        if exclude_session_id is not None:
            query = query.where(CoachingSession.id != exclude_session_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def is_slot_occupied(
        self,
        consultant_id: uuid.UUID,
        slot_date: date,
        start_time: str,
        exclude_session_id: Optional[uuid.UUID] = None,
        fail_closed: bool = True,
    ) -> bool:
        """True when an active session already holds (consultant, date, start_time)."""
        return await self.is_occupied_at(
            consultant_id,
            combine(slot_date, start_time),
            exclude_session_id=exclude_session_id,
            fail_closed=fail_closed,
        )

    async def is_occupied_at(
        self,
        consultant_id: uuid.UUID,
        slot_at: datetime,
        exclude_session_id: Optional[uuid.UUID] = None,
        fail_closed: bool = True,
    ) -> bool:
        try:
            occupying = await self._occupying_session_ids(consultant_id, slot_at, exclude_session_id)
        except SQLAlchemyError as e:
            if fail_closed:
                logger.error(
                    f"Occupancy check failed for consultant {consultant_id} at {slot_at.isoformat()}, "
                    f"treating slot as taken: {e}"
                )
                return True
            logger.warning(
                f"Occupancy check failed for consultant {consultant_id} at {slot_at.isoformat()}, "
                f"offering slot anyway: {e}"
            )
            return False
        return len(occupying) > 0

    async def open_slots(self, consultant_id: uuid.UUID, on_date: date) -> List[OpenSlot]:
        """All offerable slots for a consultant on a date, ordered by start time."""
        result = await self.db.execute(
            select(TimeSlot)
            .where(
                TimeSlot.consultant_id == consultant_id,
                TimeSlot.slot_date == on_date,
                TimeSlot.is_available == True,  # noqa: E712
                TimeSlot.is_booked == False,  # noqa: E712
            )
            .order_by(TimeSlot.start_time)
        )
        slots = result.scalars().all()

        open_slots: List[OpenSlot] = []
        for slot in slots:
            if await self.is_slot_occupied(consultant_id, on_date, slot.start_time, fail_closed=False):
                continue
            open_slots.append(
                OpenSlot(
                    consultant_id=consultant_id,
                    slot_date=slot.slot_date,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                )
            )
        return open_slots
