"""
services/scheduling/errors.py
Typed outcomes of the scheduling engine.

Failures (NotFound, Forbidden, InvalidState, PolicyViolation, Conflict, NotAdmissible)
are expected, user-facing results: services return them instead of raising, and the
routers turn them into HTTP responses. Warnings (ProviderUnavailable, PersistenceFailure)
describe degraded-but-successful provisioning and ride along on the result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


class PolicyRule(str, Enum):
    MIN_NOTICE = "min_notice"
    MAX_RESCHEDULES = "max_reschedules"


# ── Failures ──────────────────────────────────────────────────

@dataclass
class SchedulingFailure:
    message: str
    status_code: int = 400
    code: str = "scheduling_error"

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


@dataclass
class NotFound(SchedulingFailure):
    message: str = "Session not found"
    status_code: int = 404
    code: str = "not_found"


@dataclass
class Forbidden(SchedulingFailure):
    message: str = "You are not a participant of this session"
    status_code: int = 403
    code: str = "forbidden"


@dataclass
class InvalidState(SchedulingFailure):
    status_code: int = 400
    code: str = "invalid_state"


@dataclass
class PolicyViolation(SchedulingFailure):
    rule: PolicyRule = PolicyRule.MIN_NOTICE
    hours_remaining: Optional[int] = None
    reschedule_count: Optional[int] = None
    status_code: int = 400
    code: str = "policy_violation"

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["rule"] = self.rule.value
        body["canReschedule"] = False
        if self.hours_remaining is not None:
            body["hoursRemaining"] = self.hours_remaining
        if self.reschedule_count is not None:
            body["rescheduleCount"] = self.reschedule_count
        return body


@dataclass
class Conflict(SchedulingFailure):
    message: str = "The selected date and time is not available"
    status_code: int = 400
    code: str = "conflict"


@dataclass
class NotAdmissible(SchedulingFailure):
    admission: Optional[Dict[str, Any]] = None
    status_code: int = 400
    code: str = "not_admissible"

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        if self.admission is not None:
            body["admission"] = self.admission
        return body


# ── Warnings ──────────────────────────────────────────────────

@dataclass
class SchedulingWarning:
    message: str
    code: str = "warning"
    context: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.context}


@dataclass
class ProviderUnavailable(SchedulingWarning):
    code: str = "provider_unavailable"


@dataclass
class PersistenceFailure(SchedulingWarning):
    code: str = "persistence_failure"


def failure_response(failure: SchedulingFailure) -> JSONResponse:
    """HTTP rendering shared by every router: {"success": false, "error", "code", ...}."""
    return JSONResponse(
        status_code=failure.status_code,
        content={"success": False, **failure.to_response()},
    )
