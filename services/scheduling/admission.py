"""
services/scheduling/admission.py
Session admission: may a participant enter the video room right now?

A pure function of wall-clock time and the session window. Nothing is cached;
callers re-evaluate on every tick (≤ 1s), so the state can't go stale.

    now < start - 15m          → TOO_EARLY
    start - 15m ≤ now < start  → CAN_JOIN
    start ≤ now < end          → IN_PROGRESS
    now ≥ end                  → ENDED
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict

from shared.utils.timeutils import format_countdown, window_bounds

JOIN_WINDOW_MINUTES = 15


class AdmissionState(str, Enum):
    TOO_EARLY = "too_early"
    CAN_JOIN = "can_join"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"


# Position in the lifecycle; the state never moves to a lower rank as time advances
STATE_ORDER = {
    AdmissionState.TOO_EARLY: 0,
    AdmissionState.CAN_JOIN: 1,
    AdmissionState.IN_PROGRESS: 2,
    AdmissionState.ENDED: 3,
}


@dataclass(frozen=True)
class AdmissionStatus:
    state: AdmissionState
    seconds_until_start: int
    seconds_until_end: int
    seconds_until_join_opens: int
    message: str

    @property
    def can_join(self) -> bool:
        return self.state in (AdmissionState.CAN_JOIN, AdmissionState.IN_PROGRESS)

    def to_response(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "canJoin": self.can_join,
            "secondsUntilStart": self.seconds_until_start,
            "secondsUntilEnd": self.seconds_until_end,
            "secondsUntilJoinOpens": self.seconds_until_join_opens,
            "message": self.message,
        }


def _seconds(delta: timedelta) -> int:
    return max(0, int(delta.total_seconds()))


def admission_state(now: datetime, session_date: date, start_time: str, end_time: str) -> AdmissionStatus:
    start, end = window_bounds(session_date, start_time, end_time)
    join_opens = start - timedelta(minutes=JOIN_WINDOW_MINUTES)

    if now >= end:
        state, message = AdmissionState.ENDED, "The session has ended"
    elif now >= start:
        state, message = AdmissionState.IN_PROGRESS, "The session is in progress"
    elif now >= join_opens:
        state, message = AdmissionState.CAN_JOIN, "You can join the session"
    else:
        state = AdmissionState.TOO_EARLY
        message = f"You can join the session in {format_countdown(_seconds(join_opens - now))}"

    return AdmissionStatus(
        state=state,
        seconds_until_start=_seconds(start - now),
        seconds_until_end=_seconds(end - now),
        seconds_until_join_opens=_seconds(join_opens - now),
        message=message,
    )


def session_admission(session, now: datetime) -> AdmissionStatus:
    """admission_state for a stored session row."""
    return admission_state(now, session.scheduled_date, session.start_time, session.end_time)
