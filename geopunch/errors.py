from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from geopunch.models import PunchKind, PunchState


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class ConflictingStateError(ApiError):
    """The requested transition does not fit the employee's actual punch state."""

    def __init__(
        self,
        message: str,
        *,
        current_state: PunchState,
        attempted: PunchKind,
        open_session_id: int | None = None,
        open_session_started_at: datetime | None = None,
    ) -> None:
        super().__init__(
            status_code=409,
            code="CONFLICTING_STATE",
            message=message,
            details={
                "current_state": current_state.value,
                "attempted": attempted.value,
                "open_session_id": open_session_id,
                "open_session_started_at": open_session_started_at,
            },
        )
        self.current_state = current_state
        self.attempted = attempted
        self.open_session_id = open_session_id
        self.open_session_started_at = open_session_started_at


class UnknownEmployeeError(ApiError):
    def __init__(self, employee_id: int) -> None:
        super().__init__(
            status_code=404,
            code="EMPLOYEE_NOT_FOUND",
            message="Employee not found.",
            details={"employee_id": employee_id},
        )
        self.employee_id = employee_id


class EmployeeInactiveError(ApiError):
    def __init__(self, employee_id: int) -> None:
        super().__init__(
            status_code=403,
            code="EMPLOYEE_INACTIVE",
            message="Inactive employee cannot perform punch actions.",
            details={"employee_id": employee_id},
        )
        self.employee_id = employee_id


class MalformedCoordinatesError(ApiError):
    def __init__(self, lat: float, lon: float) -> None:
        super().__init__(
            status_code=422,
            code="INVALID_COORDINATES",
            message="Latitude must be between -90 and 90 and longitude between -180 and 180.",
            details={"latitude": lat, "longitude": lon},
        )


class GeofenceNotFoundError(ApiError):
    def __init__(self, geofence_id: int) -> None:
        super().__init__(
            status_code=404,
            code="GEOFENCE_NOT_FOUND",
            message="Geofence not found.",
            details={"geofence_id": geofence_id},
        )


class GeofenceNameConflictError(ApiError):
    def __init__(self, name: str) -> None:
        super().__init__(
            status_code=409,
            code="GEOFENCE_NAME_EXISTS",
            message="Geofence with this name already exists.",
            details={"name": name},
        )


class GeofenceUnavailableError(Exception):
    # Never reaches the HTTP layer: the punch degrades to "no geofence restriction".
    def __init__(self, employee_id: int, geofence_id: int) -> None:
        super().__init__(f"geofence {geofence_id} assigned to employee {employee_id} is unavailable")
        self.employee_id = employee_id
        self.geofence_id = geofence_id


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    if details:
        payload["error"]["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=payload)
