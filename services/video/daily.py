"""
services/video/daily.py
Daily.co REST client: rooms and meeting tokens.

Room names are derived from the session id, so a retried or racing creation
collides on the same name. The provider's "already exists" answer is classified
as RoomAlreadyExists and handled by the caller as success.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import settings

logger = logging.getLogger(__name__)


class VideoProviderError(Exception):
    """The video provider failed, timed out or isn't configured."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RoomAlreadyExists(VideoProviderError):
    pass


@dataclass
class RoomInfo:
    name: str
    url: str
    created_at: Optional[str] = None
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MeetingToken:
    token: str
    room_name: str
    user_name: str
    is_owner: bool
    exp: int  # unix seconds

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)


def room_name_for(session_id) -> str:
    """Deterministic provider key for a session's room."""
    return f"session-{session_id}"


def room_url_for(room_name: str) -> str:
    return f"{settings.DAILY_DOMAIN_URL.rstrip('/')}/{room_name}"


def is_already_exists(response: httpx.Response) -> bool:
    if response.status_code == 409:
        return True
    return response.status_code == 400 and "already exists" in response.text.lower()


class DailyClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.DAILY_API_KEY
        self.api_url = (api_url or settings.DAILY_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.DAILY_TIMEOUT_SECONDS
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.2, max=1),
        reraise=True,
    )
    async def _send(self, method: str, path: str, json: Optional[dict] = None) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            return await client.request(method, path, json=json)

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> httpx.Response:
        if not self.configured:
            raise VideoProviderError("Daily.co API key is not configured")
        try:
            return await self._send(method, path, json=json)
        except httpx.TransportError as e:
            raise VideoProviderError(f"Daily.co unreachable: {e}") from e

    @staticmethod
    def _body(response: httpx.Response, action: str) -> dict:
        """Decode a success body; anything that is not a JSON object is a provider error."""
        try:
            body = response.json()
        except ValueError as e:
            raise VideoProviderError(f"Daily.co {action} returned an unreadable body", response.status_code) from e
        if not isinstance(body, dict):
            raise VideoProviderError(f"Daily.co {action} returned an unexpected body", response.status_code)
        return body

    # ── Rooms ─────────────────────────────────────────────────

    async def create_room(self, name: str, properties: Optional[dict] = None) -> RoomInfo:
        payload = {
            "name": name,
            "privacy": "private",
            "properties": {
                "max_participants": settings.DAILY_MAX_PARTICIPANTS,
                "enable_chat": True,
                "enable_screenshare": True,
                "enable_recording": False,
                "start_video_off": False,
                "start_audio_off": False,
                "enable_knocking": True,
                "enable_prejoin_ui": True,
                **(properties or {}),
            },
        }
        response = await self._request("POST", "/rooms", json=payload)
        if is_already_exists(response):
            raise RoomAlreadyExists(f"Room {name} already exists", response.status_code)
        if response.is_error:
            raise VideoProviderError(
                f"Daily.co room creation failed: {response.status_code}", response.status_code
            )

        room = self._body(response, "room creation")
        logger.info(f"Daily.co room created: {room.get('name', name)}")
        return RoomInfo(
            name=room.get("name", name),
            url=room.get("url") or room_url_for(name),
            created_at=room.get("created_at"),
            config=room.get("config") or {},
        )

    async def get_room(self, name: str) -> Optional[RoomInfo]:
        response = await self._request("GET", f"/rooms/{name}")
        if response.status_code == 404:
            return None
        if response.is_error:
            raise VideoProviderError(f"Daily.co room lookup failed: {response.status_code}", response.status_code)
        room = self._body(response, "room lookup")
        return RoomInfo(
            name=room.get("name", name),
            url=room.get("url") or room_url_for(name),
            created_at=room.get("created_at"),
            config=room.get("config") or {},
        )

    async def delete_room(self, name: str) -> bool:
        response = await self._request("DELETE", f"/rooms/{name}")
        if response.status_code == 404:
            return True
        if response.is_error:
            raise VideoProviderError(f"Daily.co room deletion failed: {response.status_code}", response.status_code)
        logger.info(f"Daily.co room deleted: {name}")
        return True

    # ── Tokens ────────────────────────────────────────────────

    async def create_token(
        self,
        room_name: str,
        user_name: str,
        is_owner: bool = False,
        ttl_minutes: int = settings.MEETING_TOKEN_TTL_MINUTES,
    ) -> MeetingToken:
        """Role-scoped token: only the owner (consultant) may record."""
        exp = int(time.time()) + ttl_minutes * 60
        payload = {
            "properties": {
                "room_name": room_name,
                "user_name": user_name,
                "is_owner": is_owner,
                "exp": exp,
                "enable_screenshare": True,
                "enable_recording": "cloud" if is_owner else False,
                "start_video_off": False,
                "start_audio_off": False,
            }
        }
        response = await self._request("POST", "/meeting-tokens", json=payload)
        if response.is_error:
            raise VideoProviderError(
                f"Daily.co token creation failed: {response.status_code}", response.status_code
            )
        token = self._body(response, "token creation").get("token")
        if not token:
            raise VideoProviderError("Daily.co token creation returned no token", response.status_code)
        return MeetingToken(
            token=token,
            room_name=room_name,
            user_name=user_name,
            is_owner=is_owner,
            exp=exp,
        )


def get_video_client() -> DailyClient:
    """FastAPI dependency for the video provider."""
    return DailyClient()
