"""
tests/test_reschedule_api.py
POST /sessions/reschedule, GET /sessions/{id}/reschedule-policy and GET /sessions/{id}/history.
"""

import uuid
from datetime import datetime

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import CoachingSession, User
from tests.conftest import auth_headers, create_session


def _body(session_id, **overrides) -> dict:
    body = {
        "sessionId": str(session_id),
        "newDate": "2025-03-15",
        "newStartTime": "11:00",
        "reason": "Work trip",
    }
    body.update(overrides)
    return body


# ── Reschedule ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reschedule_success(client: AsyncClient, user: User, coaching_session: CoachingSession):
    response = await client.post(
        "/sessions/reschedule", json=_body(coaching_session.id), headers=auth_headers(user)
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["newDate"] == "2025-03-15T11:00:00"
    assert data["startTime"] == "11:00"
    assert data["endTime"] == "12:00"
    assert data["remainingReschedules"] == 1
    assert data["originalSessionDate"] == "2025-03-10T10:00:00"
    assert "refund" in data["refundNote"].lower()


@pytest.mark.asyncio
async def test_reschedule_requires_authentication(client: AsyncClient, coaching_session: CoachingSession):
    response = await client.post("/sessions/reschedule", json=_body(coaching_session.id))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_reschedule_unknown_session_is_404(client: AsyncClient, user: User):
    response = await client.post("/sessions/reschedule", json=_body(uuid.uuid4()), headers=auth_headers(user))
    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_reschedule_by_stranger_is_403(
    client: AsyncClient, other_user: User, coaching_session: CoachingSession
):
    response = await client.post(
        "/sessions/reschedule", json=_body(coaching_session.id), headers=auth_headers(other_user)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_reschedule_inside_24h_reports_hours_remaining(
    client: AsyncClient, clock: dict, user: User, coaching_session: CoachingSession
):
    clock["now"] = datetime(2025, 3, 9, 12, 0)
    response = await client.post(
        "/sessions/reschedule", json=_body(coaching_session.id), headers=auth_headers(user)
    )
    assert response.status_code == 400
    data = response.json()
    assert data["canReschedule"] is False
    assert data["hoursRemaining"] == 22
    assert data["rule"] == "min_notice"


@pytest.mark.asyncio
async def test_reschedule_limit_reports_count(
    client: AsyncClient, db: AsyncSession, user: User, consultant: User
):
    session = await create_session(db, user, consultant, reschedule_count=2)
    response = await client.post("/sessions/reschedule", json=_body(session.id), headers=auth_headers(user))
    assert response.status_code == 400
    data = response.json()
    assert data["canReschedule"] is False
    assert data["rescheduleCount"] == 2
    assert data["rule"] == "max_reschedules"


@pytest.mark.asyncio
async def test_reschedule_into_taken_slot_is_conflict(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    consultant: User,
    coaching_session: CoachingSession,
):
    await create_session(db, other_user, consultant, datetime(2025, 3, 15, 11, 0), "11:00", "12:00")
    response = await client.post(
        "/sessions/reschedule", json=_body(coaching_session.id), headers=auth_headers(user)
    )
    assert response.status_code == 400
    assert response.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_malformed_time_is_400(client: AsyncClient, user: User, coaching_session: CoachingSession):
    response = await client.post(
        "/sessions/reschedule",
        json=_body(coaching_session.id, newStartTime="eleven"),
        headers=auth_headers(user),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_reschedule_persists(
    client: AsyncClient, db: AsyncSession, consultant: User, coaching_session: CoachingSession
):
    response = await client.post(
        "/sessions/reschedule",
        json=_body(coaching_session.id, newStartTime="9:30", newEndTime="10:15"),
        headers=auth_headers(consultant),
    )
    assert response.status_code == 200

    await db.refresh(coaching_session)
    assert coaching_session.session_date == datetime(2025, 3, 15, 9, 30)
    assert coaching_session.start_time == "09:30"
    assert coaching_session.end_time == "10:15"
    assert coaching_session.reschedule_count == 1
    assert coaching_session.rescheduled_by == consultant.id


# ── Policy preview ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reschedule_policy_preview(client: AsyncClient, user: User, coaching_session: CoachingSession):
    response = await client.get(
        f"/sessions/{coaching_session.id}/reschedule-policy", headers=auth_headers(user)
    )
    assert response.status_code == 200
    data = response.json()
    assert data["canReschedule"] is True
    assert data["hoursRemaining"] == 49
    assert data["rescheduleCount"] == 0
    assert data["remainingReschedules"] == 2
    assert data["reason"] is None


@pytest.mark.asyncio
async def test_reschedule_policy_preview_inside_notice(
    client: AsyncClient, clock: dict, user: User, coaching_session: CoachingSession
):
    clock["now"] = datetime(2025, 3, 10, 8, 0)
    response = await client.get(
        f"/sessions/{coaching_session.id}/reschedule-policy", headers=auth_headers(user)
    )
    data = response.json()
    assert data["canReschedule"] is False
    assert data["hoursRemaining"] == 2
    assert data["rule"] == "min_notice"


@pytest.mark.asyncio
async def test_reschedule_policy_preview_forbidden(
    client: AsyncClient, other_user: User, coaching_session: CoachingSession
):
    response = await client.get(
        f"/sessions/{coaching_session.id}/reschedule-policy", headers=auth_headers(other_user)
    )
    assert response.status_code == 403


# ── History ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_history_lists_reschedules(client: AsyncClient, user: User, coaching_session: CoachingSession):
    await client.post("/sessions/reschedule", json=_body(coaching_session.id), headers=auth_headers(user))

    response = await client.get(f"/sessions/{coaching_session.id}/history", headers=auth_headers(user))
    assert response.status_code == 200
    entries = response.json()
    assert len(entries) == 1
    assert entries[0]["actionType"] == "rescheduled"
    assert entries[0]["oldSessionDate"] == "2025-03-10T10:00:00"
    assert entries[0]["newSessionDate"] == "2025-03-15T11:00:00"
    assert entries[0]["actionBy"] == str(user.id)


@pytest.mark.asyncio
async def test_history_hidden_from_strangers(
    client: AsyncClient, other_user: User, coaching_session: CoachingSession
):
    response = await client.get(f"/sessions/{coaching_session.id}/history", headers=auth_headers(other_user))
    assert response.status_code == 403
