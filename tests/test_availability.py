"""
tests/test_availability.py
AvailabilityIndex and BookingConflictGuard: occupancy, self-exclusion, fail-closed vs fail-open.
"""

from datetime import date, datetime
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from services.scheduling.availability import AvailabilityIndex
from services.scheduling.conflicts import BookingConflictGuard, slot_key
from shared.models.models import SessionStatus, TimeSlot, User
from tests.conftest import auth_headers, create_session

SLOT_DAY = date(2025, 3, 15)


def _broken_db() -> AsyncMock:
    db = AsyncMock(spec=AsyncSession)
    db.execute.side_effect = OperationalError("SELECT", {}, Exception("connection reset"))
    return db


async def _offer(db: AsyncSession, consultant: User, start: str, end: str, **fields) -> TimeSlot:
    slot = TimeSlot(consultant_id=consultant.id, slot_date=SLOT_DAY, start_time=start, end_time=end, **fields)
    db.add(slot)
    await db.commit()
    return slot


# ── Occupancy ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_empty_calendar_is_not_occupied(db: AsyncSession, consultant: User):
    index = AvailabilityIndex(db)
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "11:00") is False


@pytest.mark.asyncio
async def test_active_session_occupies_its_slot(db: AsyncSession, user: User, consultant: User):
    await create_session(db, user, consultant, datetime(2025, 3, 15, 11, 0), "11:00", "12:00")
    index = AvailabilityIndex(db)
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "11:00") is True
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "12:00") is False


@pytest.mark.asyncio
async def test_time_strings_are_normalized(db: AsyncSession, user: User, consultant: User):
    await create_session(db, user, consultant, datetime(2025, 3, 15, 9, 0), "09:00", "10:00")
    index = AvailabilityIndex(db)
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "9:00") is True
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "09:00:00") is True


@pytest.mark.asyncio
async def test_cancelled_and_completed_sessions_free_the_slot(db: AsyncSession, user: User, consultant: User):
    await create_session(
        db, user, consultant, datetime(2025, 3, 15, 11, 0), "11:00", "12:00", status=SessionStatus.CANCELLED
    )
    await create_session(
        db, user, consultant, datetime(2025, 3, 15, 13, 0), "13:00", "14:00", status=SessionStatus.COMPLETED
    )
    index = AvailabilityIndex(db)
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "11:00") is False
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "13:00") is False


@pytest.mark.asyncio
async def test_other_consultants_do_not_conflict(db: AsyncSession, user: User, consultant: User, other_user: User):
    await create_session(db, user, other_user, datetime(2025, 3, 15, 11, 0), "11:00", "12:00")
    assert await AvailabilityIndex(db).is_slot_occupied(consultant.id, SLOT_DAY, "11:00") is False


@pytest.mark.asyncio
async def test_guard_excludes_the_session_being_moved(db: AsyncSession, user: User, consultant: User):
    session = await create_session(db, user, consultant, datetime(2025, 3, 15, 11, 0), "11:00", "12:00")
    guard = BookingConflictGuard(db)
    candidate = slot_key(SLOT_DAY, "11:00")
    assert candidate == datetime(2025, 3, 15, 11, 0)
    assert await guard.has_conflict(consultant.id, candidate, exclude_session_id=session.id) is False


@pytest.mark.asyncio
async def test_guard_reports_other_active_session(db: AsyncSession, user: User, consultant: User, other_user: User):
    await create_session(db, other_user, consultant, datetime(2025, 3, 15, 11, 0), "11:00", "12:00")
    moving = await create_session(db, user, consultant)
    guard = BookingConflictGuard(db)
    assert await guard.has_conflict(consultant.id, slot_key(SLOT_DAY, "11:00"), exclude_session_id=moving.id) is True


# ── Store failures ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reschedule_path_fails_closed(consultant: User):
    index = AvailabilityIndex(_broken_db())
    assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "11:00", fail_closed=True) is True


@pytest.mark.asyncio
async def test_guard_is_always_fail_closed(consultant: User):
    guard = BookingConflictGuard(_broken_db())
    assert await guard.has_conflict(consultant.id, slot_key(SLOT_DAY, "11:00"), exclude_session_id=None) is True


@pytest.mark.asyncio
async def test_read_path_fails_open_with_warning(consultant: User, caplog):
    index = AvailabilityIndex(_broken_db())
    with caplog.at_level("WARNING", logger="services.scheduling.availability"):
        assert await index.is_slot_occupied(consultant.id, SLOT_DAY, "11:00", fail_closed=False) is False
    assert "offering slot anyway" in caplog.text


# ── Open slots ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_open_slots_skip_unavailable_booked_and_occupied(
    db: AsyncSession, user: User, consultant: User
):
    await _offer(db, consultant, "09:00", "10:00")
    await _offer(db, consultant, "10:00", "11:00", is_available=False)
    await _offer(db, consultant, "11:00", "12:00", is_booked=True)
    await _offer(db, consultant, "13:00", "14:00")
    await create_session(db, user, consultant, datetime(2025, 3, 15, 13, 0), "13:00", "14:00")

    slots = await AvailabilityIndex(db).open_slots(consultant.id, SLOT_DAY)
    assert [s.start_time for s in slots] == ["09:00"]


@pytest.mark.asyncio
async def test_slots_endpoint(client: AsyncClient, db: AsyncSession, user: User, consultant: User):
    await _offer(db, consultant, "16:00", "17:00")
    await _offer(db, consultant, "09:00", "10:00")

    response = await client.get(
        f"/consultants/{consultant.id}/slots",
        params={"date": "2025-03-15"},
        headers=auth_headers(user),
    )
    assert response.status_code == 200
    data = response.json()
    assert [s["startTime"] for s in data] == ["09:00", "16:00"]
    assert data[0]["date"] == "2025-03-15"
    assert data[0]["consultantId"] == str(consultant.id)
