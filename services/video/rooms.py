"""
services/video/rooms.py
MeetingRoomProvisioner: joinable room URL + per-participant token for an admissible session.

Steps:
    1. reuse the stored room if the session has one
    2. otherwise create "session-<id>" at the provider; "already exists" resolves
       to the same deterministic URL
    3. persist name/URL once (conditional on daily_room_url still being empty)
    4. issue a role-scoped token; only the consultant's token is cached

The provider and the store are both allowed to fail. A provider failure degrades to
a synthetic room reference with a ProviderUnavailable warning; a store failure after
a provider-side success is a PersistenceFailure warning. Neither fails the join.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.scheduling.admission import AdmissionStatus, admission_state
from services.scheduling.errors import (
    Forbidden,
    InvalidState,
    NotAdmissible,
    NotFound,
    PersistenceFailure,
    ProviderUnavailable,
    SchedulingFailure,
    SchedulingWarning,
)
from services.video.daily import (
    DailyClient,
    RoomAlreadyExists,
    VideoProviderError,
    room_name_for,
    room_url_for,
)
from shared.models.models import CoachingSession, TERMINAL_STATUSES
from shared.utils.timeutils import utc_now

logger = logging.getLogger(__name__)

PLACEHOLDER_TOKENS = ("placeholder-token",)
MOCK_TOKEN_PREFIX = "mock-token"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timezone-aware columns back naive
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_usable_token(token: Optional[str], expires_at: Optional[datetime], now: datetime) -> bool:
    """A cached token is reusable only if it is real and not yet expired."""
    if not token or token in PLACEHOLDER_TOKENS or token.startswith(MOCK_TOKEN_PREFIX):
        return False
    expires_at = _as_utc(expires_at)
    return expires_at is not None and expires_at > now


@dataclass(frozen=True)
class SessionView:
    """Plain copy of the fields provisioning needs; survives rollbacks that expire the row."""
    id: uuid.UUID
    client_id: uuid.UUID
    consultant_id: uuid.UUID
    session_date: datetime
    start_time: str
    end_time: str
    status: Any
    daily_room_name: Optional[str]
    daily_room_url: Optional[str]
    daily_meeting_token: Optional[str]
    daily_meeting_token_expires_at: Optional[datetime]
    meeting_started_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: CoachingSession) -> "SessionView":
        return cls(
            id=row.id,
            client_id=row.client_id,
            consultant_id=row.consultant_id,
            session_date=row.session_date,
            start_time=row.start_time,
            end_time=row.end_time,
            status=row.status,
            daily_room_name=row.daily_room_name,
            daily_room_url=row.daily_room_url,
            daily_meeting_token=row.daily_meeting_token,
            daily_meeting_token_expires_at=row.daily_meeting_token_expires_at,
            meeting_started_at=row.meeting_started_at,
        )

    def admission(self, now: datetime) -> AdmissionStatus:
        return admission_state(now, self.session_date.date(), self.start_time, self.end_time)


@dataclass
class RoomRef:
    name: str
    url: str
    synthetic: bool = False


@dataclass
class JoinInfo:
    room_name: str
    room_url: str
    token: Optional[str]
    token_expires_at: Optional[datetime]
    is_owner: bool
    admission: AdmissionStatus
    synthetic: bool = False
    warnings: List[SchedulingWarning] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.synthetic or bool(self.warnings)

    def to_response(self) -> Dict[str, Any]:
        return {
            "roomName": self.room_name,
            "roomUrl": self.room_url,
            "token": self.token,
            "tokenExpiresAt": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "isOwner": self.is_owner,
            "degraded": self.degraded,
            "warnings": [w.to_response() for w in self.warnings],
            "admission": self.admission.to_response(),
        }


@dataclass
class ProvisionResult:
    join: Optional[JoinInfo] = None
    failure: Optional[SchedulingFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class MeetingEvent:
    session_id: Optional[uuid.UUID] = None
    recorded: bool = False
    at: Optional[datetime] = None
    failure: Optional[SchedulingFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class MeetingRoomProvisioner:
    def __init__(
        self,
        db: AsyncSession,
        video: DailyClient,
        token_ttl_minutes: int = settings.MEETING_TOKEN_TTL_MINUTES,
    ):
        self.db = db
        self.video = video
        self.token_ttl_minutes = token_ttl_minutes

    async def _load(self, session_id: uuid.UUID, user_id: uuid.UUID) -> Tuple[Optional[SessionView], Optional[SchedulingFailure]]:
        result = await self.db.execute(select(CoachingSession).where(CoachingSession.id == session_id))
        row = result.scalar_one_or_none()
        if row is None:
            return None, NotFound()
        if not row.is_participant(user_id):
            return None, Forbidden()
        return SessionView.from_row(row), None

    # ── Room ──────────────────────────────────────────────────

    async def ensure_room(self, session: SessionView) -> Tuple[RoomRef, List[SchedulingWarning]]:
        if session.daily_room_url:
            return RoomRef(session.daily_room_name or room_name_for(session.id), session.daily_room_url), []

        name = room_name_for(session.id)
        try:
            room = await self.video.create_room(name)
            name, url = room.name, room.url
        except RoomAlreadyExists:
            logger.info(f"Room {name} already exists at the provider, reusing it")
            url = room_url_for(name)
        except VideoProviderError as e:
            logger.warning(f"Video provider unavailable for session {session.id}, using synthetic room: {e}")
            return RoomRef(name, room_url_for(name), synthetic=True), [
                ProviderUnavailable(
                    message="The video service is temporarily unavailable. Please try again shortly.",
                    context={"sessionId": str(session.id)},
                )
            ]

        return await self._persist_room(session.id, name, url)

    async def _persist_room(self, session_id: uuid.UUID, name: str, url: str) -> Tuple[RoomRef, List[SchedulingWarning]]:
        """Write the room once; a concurrent writer that got there first wins."""
        try:
            result = await self.db.execute(
                update(CoachingSession)
                .where(CoachingSession.id == session_id, CoachingSession.daily_room_url.is_(None))
                .values(daily_room_name=name, daily_room_url=url)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
            if result.rowcount == 1:
                logger.info(f"Room {name} stored for session {session_id}")
                return RoomRef(name, url), []

            stored = await self.db.execute(
                select(CoachingSession.daily_room_name, CoachingSession.daily_room_url).where(
                    CoachingSession.id == session_id
                )
            )
            stored_name, stored_url = stored.one()
            return RoomRef(stored_name or name, stored_url or url), []
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Room {name} created but not stored for session {session_id}: {e}")
            return RoomRef(name, url), [
                PersistenceFailure(
                    message="The meeting room could not be saved to the session",
                    context={"sessionId": str(session_id), "roomName": name},
                )
            ]

    # ── Token ─────────────────────────────────────────────────

    async def issue_token(
        self,
        session: SessionView,
        room_name: str,
        user_name: str,
        is_owner: bool,
    ) -> Tuple[Optional[str], Optional[datetime], List[SchedulingWarning]]:
        if is_owner and is_usable_token(
            session.daily_meeting_token, session.daily_meeting_token_expires_at, utc_now()
        ):
            return session.daily_meeting_token, _as_utc(session.daily_meeting_token_expires_at), []

        try:
            token = await self.video.create_token(room_name, user_name, is_owner, self.token_ttl_minutes)
        except VideoProviderError as e:
            logger.warning(f"Meeting token not issued for session {session.id}: {e}")
            return None, None, [
                ProviderUnavailable(
                    message="A meeting token could not be issued. Please try again shortly.",
                    context={"sessionId": str(session.id)},
                )
            ]

        if not is_owner:
            return token.token, token.expires_at, []

        try:
            await self.db.execute(
                update(CoachingSession)
                .where(CoachingSession.id == session.id)
                .values(daily_meeting_token=token.token, daily_meeting_token_expires_at=token.expires_at)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Consultant token for session {session.id} not cached: {e}")
            return token.token, token.expires_at, [
                PersistenceFailure(
                    message="The meeting token could not be saved",
                    context={"sessionId": str(session.id)},
                )
            ]
        return token.token, token.expires_at, []

    # ── Join ──────────────────────────────────────────────────

    async def join(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        user_name: str,
        now: datetime,
    ) -> ProvisionResult:
        session, failure = await self._load(session_id, user_id)
        if failure is not None:
            return ProvisionResult(failure=failure)
        if session.status in TERMINAL_STATUSES:
            return ProvisionResult(
                failure=InvalidState(message=f"This session is {session.status.value} and cannot be joined")
            )

        admission = session.admission(now)
        if not admission.can_join:
            return ProvisionResult(
                failure=NotAdmissible(message=admission.message, admission=admission.to_response())
            )

        room, warnings = await self.ensure_room(session)
        is_owner = user_id == session.consultant_id

        token, token_expires_at = None, None
        if not room.synthetic:
            token, token_expires_at, token_warnings = await self.issue_token(session, room.name, user_name, is_owner)
            warnings.extend(token_warnings)

        logger.info(
            f"User {user_id} joining session {session_id} in {room.name} "
            f"({'owner' if is_owner else 'participant'}{', degraded' if warnings else ''})"
        )
        return ProvisionResult(
            join=JoinInfo(
                room_name=room.name,
                room_url=room.url,
                token=token,
                token_expires_at=token_expires_at,
                is_owner=is_owner,
                admission=admission,
                synthetic=room.synthetic,
                warnings=warnings,
            )
        )

    # ── Meeting timestamps ────────────────────────────────────

    async def record_meeting_started(self, session_id: uuid.UUID, user_id: uuid.UUID, now: datetime) -> MeetingEvent:
        """Consultant's first entry marks the meeting started. Later calls are no-ops."""
        session, failure = await self._load(session_id, user_id)
        if failure is not None:
            return MeetingEvent(failure=failure)
        if session.status in TERMINAL_STATUSES:
            return MeetingEvent(failure=InvalidState(message=f"This session is {session.status.value}"))

        admission = session.admission(now)
        if not admission.can_join:
            return MeetingEvent(failure=NotAdmissible(message=admission.message, admission=admission.to_response()))

        if user_id != session.consultant_id:
            return MeetingEvent(session_id=session.id, at=_as_utc(session.meeting_started_at))

        started_at = utc_now()
        result = await self.db.execute(
            update(CoachingSession)
            .where(CoachingSession.id == session.id, CoachingSession.meeting_started_at.is_(None))
            .values(meeting_started_at=started_at)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            stored = await self.db.execute(
                select(CoachingSession.meeting_started_at).where(CoachingSession.id == session.id)
            )
            return MeetingEvent(session_id=session.id, at=_as_utc(stored.scalar_one()))

        logger.info(f"Meeting for session {session.id} started")
        return MeetingEvent(session_id=session.id, recorded=True, at=started_at)

    async def record_meeting_ended(self, session_id: uuid.UUID, user_id: uuid.UUID) -> MeetingEvent:
        session, failure = await self._load(session_id, user_id)
        if failure is not None:
            return MeetingEvent(failure=failure)
        if user_id != session.consultant_id:
            return MeetingEvent(session_id=session.id)

        ended_at = utc_now()
        await self.db.execute(
            update(CoachingSession)
            .where(CoachingSession.id == session.id)
            .values(meeting_ended_at=ended_at)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info(f"Meeting for session {session.id} ended")
        return MeetingEvent(session_id=session.id, recorded=True, at=ended_at)
