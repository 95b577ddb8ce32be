from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from geopunch.audit import log_audit, request_audit_fields
from geopunch.db import get_db
from geopunch.errors import ApiError
from geopunch.models import AuditActorType, PunchKind, PunchState
from geopunch.schemas import (
    LocationValidationRead,
    PunchRequest,
    PunchSessionRead,
    PunchStatusResponse,
    PunchTodayStats,
    PunchTransitionResponse,
)
from geopunch.security import require_employee
from geopunch.services.punches import TransitionResult, get_punch_status, transition

router = APIRouter(prefix="/api/punches", tags=["punches"])

_AUDIT_ACTIONS = {
    PunchKind.PUNCH_IN: "PUNCH_IN",
    PunchKind.PUNCH_OUT: "PUNCH_OUT",
    PunchKind.BREAK_START: "BREAK_START",
    PunchKind.BREAK_END: "BREAK_END",
}


def _transition_response(result: TransitionResult) -> PunchTransitionResponse:
    return PunchTransitionResponse(
        message=result.message,
        kind=result.kind,
        previous_state=result.previous_state,
        state=result.state,
        session=PunchSessionRead.from_session(
            result.session,
            worked_hours=result.worked_hours,
            break_hours=result.break_hours,
        ),
        location_validation=LocationValidationRead.from_result(result.validation),
    )


def _run_transition(
    *,
    kind: PunchKind,
    payload: PunchRequest,
    request: Request,
    db: Session,
    employee_id: int,
) -> PunchTransitionResponse:
    audit_kwargs = {
        "actor_type": AuditActorType.EMPLOYEE,
        "actor_id": str(employee_id),
        "action": _AUDIT_ACTIONS[kind],
        "entity_type": "punch_session",
        **request_audit_fields(request),
    }
    try:
        result = transition(
            db,
            employee_id=employee_id,
            kind=kind,
            lat=payload.latitude,
            lon=payload.longitude,
            notes=payload.notes,
        )
    except ApiError as exc:
        log_audit(
            db,
            success=False,
            details={"code": exc.code, **(exc.details or {})},
            **audit_kwargs,
        )
        raise

    request.state.punch_session_id = result.session.id
    request.state.punch_state = result.state.value
    request.state.location_valid = result.validation.is_valid
    response = _transition_response(result)
    log_audit(
        db,
        success=True,
        entity_id=str(result.session.id),
        details={
            "latitude": payload.latitude,
            "longitude": payload.longitude,
            **result.validation.to_log_dict(),
        },
        **audit_kwargs,
    )
    return response


@router.get("/status", response_model=PunchStatusResponse)
def punch_status(
    db: Session = Depends(get_db),
    employee_id: int = Depends(require_employee),
) -> PunchStatusResponse:
    punch_status_value = get_punch_status(db, employee_id=employee_id)
    open_session = punch_status_value.open_session
    current_session = None
    if open_session is not None:
        current_session = PunchSessionRead.from_session(
            open_session,
            worked_hours=punch_status_value.current_worked_hours,
            break_hours=punch_status_value.current_break_hours,
        )
    return PunchStatusResponse(
        employee_id=employee_id,
        state=punch_status_value.state,
        is_punched_in=punch_status_value.state != PunchState.CLOCKED_OUT,
        is_on_break=punch_status_value.state == PunchState.ON_BREAK,
        current_session=current_session,
        today=PunchTodayStats(
            total_sessions=punch_status_value.today_sessions,
            hours_worked=round(punch_status_value.today_worked_hours, 2),
        ),
    )


@router.post("/in", response_model=PunchTransitionResponse, status_code=status.HTTP_201_CREATED)
def punch_in(
    payload: PunchRequest,
    request: Request,
    db: Session = Depends(get_db),
    employee_id: int = Depends(require_employee),
) -> PunchTransitionResponse:
    return _run_transition(
        kind=PunchKind.PUNCH_IN,
        payload=payload,
        request=request,
        db=db,
        employee_id=employee_id,
    )


@router.patch("/out", response_model=PunchTransitionResponse)
def punch_out(
    payload: PunchRequest,
    request: Request,
    db: Session = Depends(get_db),
    employee_id: int = Depends(require_employee),
) -> PunchTransitionResponse:
    return _run_transition(
        kind=PunchKind.PUNCH_OUT,
        payload=payload,
        request=request,
        db=db,
        employee_id=employee_id,
    )


@router.post("/break/start", response_model=PunchTransitionResponse)
def break_start(
    payload: PunchRequest,
    request: Request,
    db: Session = Depends(get_db),
    employee_id: int = Depends(require_employee),
) -> PunchTransitionResponse:
    return _run_transition(
        kind=PunchKind.BREAK_START,
        payload=payload,
        request=request,
        db=db,
        employee_id=employee_id,
    )


@router.post("/break/end", response_model=PunchTransitionResponse)
def break_end(
    payload: PunchRequest,
    request: Request,
    db: Session = Depends(get_db),
    employee_id: int = Depends(require_employee),
) -> PunchTransitionResponse:
    return _run_transition(
        kind=PunchKind.BREAK_END,
        payload=payload,
        request=request,
        db=db,
        employee_id=employee_id,
    )
