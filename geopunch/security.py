from __future__ import annotations

from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from geopunch.errors import ApiError
from geopunch.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

EMPLOYEE_ROLES = frozenset({"employee", "manager", "admin"})


def decode_token(token: str) -> dict[str, Any]:
    """Verify an access token issued by the identity service."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ", "access") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    return payload


def _require_claims(credentials: HTTPAuthorizationCredentials | None) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    return decode_token(credentials.credentials)


def require_employee(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> int:
    """Return the authenticated employee id (the token subject)."""
    payload = _require_claims(credentials)
    if payload.get("role", "employee") not in EMPLOYEE_ROLES:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    try:
        employee_id = int(payload["sub"])
    except ValueError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.") from exc
    if employee_id < 1:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    request.state.actor = "employee"
    request.state.actor_id = str(employee_id)
    request.state.employee_id = employee_id
    return employee_id


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    payload = _require_claims(credentials)
    if payload.get("role") != "admin":
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    request.state.actor = "admin"
    request.state.actor_id = str(payload.get("sub"))
    return payload
