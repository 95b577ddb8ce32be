from typing import Any

from fastapi import APIRouter, Depends, Path, Request, status
from sqlalchemy.orm import Session

from geopunch.audit import log_audit, request_audit_fields
from geopunch.db import get_db
from geopunch.models import AuditActorType
from geopunch.schemas import (
    GeofenceCreate,
    GeofenceCreateResponse,
    GeofenceOverlapRead,
    GeofenceRead,
    GeofenceTestRequest,
    GeofenceTestResponse,
    LocationValidationRead,
)
from geopunch.security import require_admin, require_employee
from geopunch.services.geofences import check_geofence_location, create_geofence, overlap_warnings

router = APIRouter(prefix="/api/geofences", tags=["geofences"])


@router.post("", response_model=GeofenceCreateResponse, status_code=status.HTTP_201_CREATED)
def create_geofence_endpoint(
    payload: GeofenceCreate,
    request: Request,
    db: Session = Depends(get_db),
    claims: dict[str, Any] = Depends(require_admin),
) -> GeofenceCreateResponse:
    geofence, overlaps = create_geofence(db, payload)
    response = GeofenceCreateResponse(
        geofence=GeofenceRead.model_validate(geofence),
        overlapping_geofences=[
            GeofenceOverlapRead(geofence_id=item.geofence_id, name=item.name) for item in overlaps
        ],
        warnings=overlap_warnings(overlaps),
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=str(claims.get("sub")),
        action="GEOFENCE_CREATED",
        success=True,
        entity_type="geofence",
        entity_id=str(response.geofence.id),
        details={
            "radius_meters": payload.radius_meters,
            "overlapping_ids": [item.geofence_id for item in overlaps],
        },
        **request_audit_fields(request),
    )
    return response


@router.post("/{geofence_id}/test", response_model=GeofenceTestResponse)
def check_geofence_point(
    payload: GeofenceTestRequest,
    geofence_id: int = Path(ge=1),
    db: Session = Depends(get_db),
    _employee_id: int = Depends(require_employee),
) -> GeofenceTestResponse:
    geofence, validation = check_geofence_location(
        db,
        geofence_id=geofence_id,
        lat=payload.latitude,
        lon=payload.longitude,
    )
    return GeofenceTestResponse(
        geofence=GeofenceRead.model_validate(geofence),
        latitude=payload.latitude,
        longitude=payload.longitude,
        result=LocationValidationRead.from_result(validation),
    )
