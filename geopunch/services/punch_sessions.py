from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from geopunch.errors import ConflictingStateError, EmployeeInactiveError, UnknownEmployeeError
from geopunch.models import Employee, PunchKind, PunchSession, PunchState

OPEN_SESSION_INDEX = "uq_punch_sessions_employee_open"


def resolve_employee(db: Session, employee_id: int, *, lock: bool = False) -> Employee:
    statement = select(Employee).where(
        Employee.id == employee_id,
        Employee.deleted_at.is_(None),
    )
    if lock:
        statement = statement.with_for_update()
    employee = db.scalar(statement)
    if employee is None:
        raise UnknownEmployeeError(employee_id)
    if not employee.is_active:
        raise EmployeeInactiveError(employee_id)
    return employee


def lock_employee(db: Session, employee_id: int) -> Employee:
    """Load the employee with a row lock held until commit/rollback.

    Every transition for one employee goes through this lock, which serializes
    the open-session check with the write. SQLite ignores FOR UPDATE; the
    partial unique index on punch_sessions still rejects a second open row.
    """
    return resolve_employee(db, employee_id, lock=True)


def find_open_session(db: Session, employee_id: int) -> PunchSession | None:
    return db.scalar(
        select(PunchSession)
        .where(
            PunchSession.employee_id == employee_id,
            PunchSession.punch_out_ts_utc.is_(None),
        )
        .order_by(PunchSession.punch_in_ts_utc.desc(), PunchSession.id.desc())
    )


def _is_open_session_violation(exc: IntegrityError) -> bool:
    text_value = str(exc.orig) if exc.orig is not None else str(exc)
    # PostgreSQL names the index; SQLite only names the column.
    return OPEN_SESSION_INDEX in text_value or "punch_sessions.employee_id" in text_value


def upsert_session(db: Session, session: PunchSession, *, kind: PunchKind) -> PunchSession:
    """Stage ``session`` and flush so the unique index is checked now, not at commit."""
    db.add(session)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        if not _is_open_session_violation(exc):
            raise
        raise ConflictingStateError(
            "Another punch-in was recorded for this employee at the same time. "
            "Refresh your status before trying again.",
            current_state=PunchState.CLOCKED_IN,
            attempted=kind,
        ) from exc
    return session


def list_sessions_started_between(
    db: Session,
    *,
    employee_id: int,
    start_utc: datetime,
    end_utc: datetime,
) -> list[PunchSession]:
    return list(
        db.scalars(
            select(PunchSession)
            .where(
                PunchSession.employee_id == employee_id,
                PunchSession.punch_in_ts_utc >= start_utc,
                PunchSession.punch_in_ts_utc < end_utc,
            )
            .order_by(PunchSession.punch_in_ts_utc.asc(), PunchSession.id.asc())
        ).all()
    )


def count_open_sessions(db: Session, employee_id: int) -> int:
    return int(
        db.scalar(
            select(func.count(PunchSession.id)).where(
                PunchSession.employee_id == employee_id,
                PunchSession.punch_out_ts_utc.is_(None),
            )
        )
        or 0
    )
