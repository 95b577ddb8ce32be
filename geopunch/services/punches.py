from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from geopunch.errors import ApiError
from geopunch.models import PunchKind, PunchSession, PunchState
from geopunch.services.geofences import resolve_assigned_geofence
from geopunch.services.location import LocationValidationResult, ensure_valid_coordinates, validate_location
from geopunch.services.punch_sessions import (
    find_open_session,
    list_sessions_started_between,
    lock_employee,
    resolve_employee,
    upsert_session,
)
from geopunch.services.punch_state import (
    apply_transition,
    break_hours,
    derive_state,
    normalize_ts,
    worked_hours,
)
from geopunch.settings import get_settings

logger = logging.getLogger("geopunch.punches")

_SUCCESS_MESSAGES = {
    PunchKind.PUNCH_IN: ("Punched in successfully", "Punched in with location warning"),
    PunchKind.PUNCH_OUT: ("Punched out successfully", "Punched out with location warning"),
    PunchKind.BREAK_START: ("Break started", "Break started with location warning"),
    PunchKind.BREAK_END: ("Break ended", "Break ended with location warning"),
}


@dataclass(slots=True)
class TransitionResult:
    kind: PunchKind
    session: PunchSession
    validation: LocationValidationResult
    previous_state: PunchState
    state: PunchState
    message: str
    worked_hours: float
    break_hours: float


@dataclass(slots=True)
class PunchStatus:
    employee_id: int
    state: PunchState
    open_session: PunchSession | None
    current_worked_hours: float | None
    current_break_hours: float | None
    today_sessions: int
    today_worked_hours: float
    sessions_today: list[PunchSession] = field(default_factory=list)


@lru_cache
def _attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("attendance_timezone_invalid", extra={"attendance_timezone": raw_name})
        return ZoneInfo("UTC")


def _local_day_bounds_utc(reference_ts_utc: datetime) -> tuple[datetime, datetime]:
    normalized = normalize_ts(reference_ts_utc)
    tz = _attendance_timezone()
    local_day = normalized.astimezone(tz).date()
    local_start = datetime.combine(local_day, time.min, tzinfo=tz)
    local_end = local_start + timedelta(days=1)
    return normalize_ts(local_start), normalize_ts(local_end)


def transition(
    db: Session,
    *,
    employee_id: int,
    kind: PunchKind,
    lat: float,
    lon: float,
    notes: str | None = None,
    now_utc: datetime | None = None,
) -> TransitionResult:
    """Apply one punch transition for ``employee_id`` as a single unit of work.

    Location is always validated but only recorded: a punch outside the
    assigned geofence succeeds with ``is_valid=False``. Any ApiError rolls the
    transaction back, so a rejected transition never leaves partial state.
    """
    ensure_valid_coordinates(lat, lon)
    ts_utc = normalize_ts(now_utc)

    try:
        lock_employee(db, employee_id)
        geofence = resolve_assigned_geofence(db, employee_id)
        validation = validate_location(lat, lon, geofence)

        open_session = find_open_session(db, employee_id)
        previous_state = derive_state(open_session)
        session = apply_transition(
            open_session,
            kind,
            employee_id=employee_id,
            now_utc=ts_utc,
            lat=lat,
            lon=lon,
            validation=validation,
            notes=notes,
        )
        upsert_session(db, session, kind=kind)
        db.commit()
    except ApiError as exc:
        db.rollback()
        logger.info(
            "punch_transition_rejected",
            extra={
                "employee_id": employee_id,
                "kind": kind.value,
                "code": exc.code,
                "details": exc.details,
            },
        )
        raise

    db.refresh(session)
    state = derive_state(session)
    ok_message, warning_message = _SUCCESS_MESSAGES[kind]
    result = TransitionResult(
        kind=kind,
        session=session,
        validation=validation,
        previous_state=previous_state,
        state=state,
        message=ok_message if validation.is_valid else warning_message,
        worked_hours=worked_hours(session, ts_utc),
        break_hours=break_hours(session, ts_utc),
    )

    log_extra = {
        "employee_id": employee_id,
        "punch_session_id": session.id,
        "kind": kind.value,
        "previous_state": previous_state.value,
        "state": state.value,
        "latitude": lat,
        "longitude": lon,
        **validation.to_log_dict(),
    }
    if kind == PunchKind.PUNCH_OUT:
        log_extra["hours_worked"] = round(result.worked_hours, 2)
    logger.info("punch_transition", extra=log_extra)
    return result


def get_punch_status(
    db: Session,
    *,
    employee_id: int,
    now_utc: datetime | None = None,
) -> PunchStatus:
    ts_utc = normalize_ts(now_utc)
    resolve_employee(db, employee_id)
    open_session = find_open_session(db, employee_id)
    state = derive_state(open_session)

    day_start, day_end = _local_day_bounds_utc(ts_utc)
    sessions_today = list_sessions_started_between(
        db,
        employee_id=employee_id,
        start_utc=day_start,
        end_utc=day_end,
    )
    today_worked = sum(
        worked_hours(item, ts_utc) for item in sessions_today if item.punch_out_ts_utc is not None
    )

    return PunchStatus(
        employee_id=employee_id,
        state=state,
        open_session=open_session,
        current_worked_hours=worked_hours(open_session, ts_utc) if open_session is not None else None,
        current_break_hours=break_hours(open_session, ts_utc) if open_session is not None else None,
        today_sessions=len(sessions_today),
        today_worked_hours=today_worked,
        sessions_today=sessions_today,
    )
