"""Punch state derivation and transitions.

The state is never stored. It is read off the employee's open session:

* no open session                          -> CLOCKED_OUT
* open session, break started and not ended -> ON_BREAK
* any other open session                    -> CLOCKED_IN

Nothing in this module touches the database; the caller loads the open
session, calls :func:`apply_transition` and persists what comes back.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from geopunch.errors import ConflictingStateError
from geopunch.models import PunchKind, PunchSession, PunchState
from geopunch.services.location import LocationValidationResult

NOTES_SEPARATOR = " | "


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def derive_state(open_session: PunchSession | None) -> PunchState:
    if open_session is None or open_session.punch_out_ts_utc is not None:
        return PunchState.CLOCKED_OUT
    if open_session.break_start_ts_utc is not None and open_session.break_end_ts_utc is None:
        return PunchState.ON_BREAK
    return PunchState.CLOCKED_IN


def append_notes(existing: str | None, new: str | None) -> str | None:
    if not new:
        return existing
    if not existing:
        return new
    return f"{existing}{NOTES_SEPARATOR}{new}"


def _conflict(
    message: str,
    *,
    state: PunchState,
    kind: PunchKind,
    open_session: PunchSession | None,
) -> ConflictingStateError:
    return ConflictingStateError(
        message,
        current_state=state,
        attempted=kind,
        open_session_id=open_session.id if open_session is not None else None,
        open_session_started_at=(
            normalize_ts(open_session.punch_in_ts_utc) if open_session is not None else None
        ),
    )


def check_transition(open_session: PunchSession | None, kind: PunchKind) -> PunchState:
    """Raise ConflictingStateError unless ``kind`` is legal; return the current state."""
    state = derive_state(open_session)

    if kind == PunchKind.PUNCH_IN:
        if state != PunchState.CLOCKED_OUT:
            started = normalize_ts(open_session.punch_in_ts_utc).isoformat()
            suffix = " and currently on break" if state == PunchState.ON_BREAK else ""
            raise _conflict(
                f"You are already punched in since {started}{suffix}. Please punch out first.",
                state=state,
                kind=kind,
                open_session=open_session,
            )
        return state

    if state == PunchState.CLOCKED_OUT:
        if kind == PunchKind.PUNCH_OUT:
            message = "No active punch found. Please punch in first."
        elif kind == PunchKind.BREAK_START:
            message = "No active punch found. Please punch in before starting a break."
        else:
            message = "No active punch found. There is no break to end."
        raise _conflict(message, state=state, kind=kind, open_session=None)

    if kind == PunchKind.BREAK_START:
        if state == PunchState.ON_BREAK:
            break_started = normalize_ts(open_session.break_start_ts_utc).isoformat()
            raise _conflict(
                f"You are already on break since {break_started}.",
                state=state,
                kind=kind,
                open_session=open_session,
            )
        if open_session.break_end_ts_utc is not None:
            raise _conflict(
                "A break was already taken during this session.",
                state=state,
                kind=kind,
                open_session=open_session,
            )

    if kind == PunchKind.BREAK_END and state != PunchState.ON_BREAK:
        raise _conflict(
            "You are not on a break.",
            state=state,
            kind=kind,
            open_session=open_session,
        )

    return state


def _latest_recorded_ts(session: PunchSession) -> datetime:
    recorded = [
        session.punch_in_ts_utc,
        session.break_start_ts_utc,
        session.break_end_ts_utc,
    ]
    return max(normalize_ts(value) for value in recorded if value is not None)


def apply_transition(
    open_session: PunchSession | None,
    kind: PunchKind,
    *,
    employee_id: int,
    now_utc: datetime,
    lat: float,
    lon: float,
    validation: LocationValidationResult,
    notes: str | None = None,
) -> PunchSession:
    """Validate and apply ``kind``. Returns the new or mutated session.

    Preconditions are checked before anything is written, so a conflict leaves
    ``open_session`` untouched.
    """
    check_transition(open_session, kind)
    now = normalize_ts(now_utc)

    if kind == PunchKind.PUNCH_IN:
        return PunchSession(
            employee_id=employee_id,
            geofence_id=validation.geofence_id,
            punch_in_ts_utc=now,
            punch_in_lat=lat,
            punch_in_lon=lon,
            punch_in_valid_geofence=validation.is_valid,
            punch_in_distance_m=validation.distance_m,
            notes=notes or None,
        )

    if open_session is None:
        raise _conflict(
            "No active punch found. Please punch in first.",
            state=PunchState.CLOCKED_OUT,
            kind=kind,
            open_session=None,
        )

    if kind == PunchKind.PUNCH_OUT:
        closing = max(now, _latest_recorded_ts(open_session))
        # Close a running break at punch-out so break_end <= punch_out holds.
        if open_session.break_start_ts_utc is not None and open_session.break_end_ts_utc is None:
            open_session.break_end_ts_utc = closing
        open_session.punch_out_ts_utc = closing
        open_session.punch_out_lat = lat
        open_session.punch_out_lon = lon
        open_session.punch_out_valid_geofence = validation.is_valid
        open_session.punch_out_distance_m = validation.distance_m
        open_session.notes = append_notes(open_session.notes, notes)
    elif kind == PunchKind.BREAK_START:
        open_session.break_start_ts_utc = max(now, normalize_ts(open_session.punch_in_ts_utc))
    elif kind == PunchKind.BREAK_END:
        open_session.break_end_ts_utc = max(now, normalize_ts(open_session.break_start_ts_utc))
    return open_session


def break_duration(session: PunchSession, now_utc: datetime | None = None) -> timedelta:
    if session.break_start_ts_utc is None:
        return timedelta(0)
    start = normalize_ts(session.break_start_ts_utc)
    if session.break_end_ts_utc is not None:
        end = normalize_ts(session.break_end_ts_utc)
    elif session.punch_out_ts_utc is not None:
        end = normalize_ts(session.punch_out_ts_utc)
    else:
        end = normalize_ts(now_utc)
    return max(timedelta(0), end - start)


def worked_duration(session: PunchSession, now_utc: datetime | None = None) -> timedelta:
    start = normalize_ts(session.punch_in_ts_utc)
    if session.punch_out_ts_utc is not None:
        end = normalize_ts(session.punch_out_ts_utc)
    else:
        end = normalize_ts(now_utc)
    return max(timedelta(0), (end - start) - break_duration(session, now_utc))


def worked_hours(session: PunchSession, now_utc: datetime | None = None) -> float:
    return worked_duration(session, now_utc).total_seconds() / 3600


def break_hours(session: PunchSession, now_utc: datetime | None = None) -> float:
    return break_duration(session, now_utc).total_seconds() / 3600
