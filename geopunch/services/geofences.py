from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from geopunch.errors import (
    GeofenceNameConflictError,
    GeofenceNotFoundError,
    GeofenceUnavailableError,
    UnknownEmployeeError,
)
from geopunch.models import Employee, Geofence
from geopunch.schemas import GeofenceCreate
from geopunch.services.location import (
    LocationValidationResult,
    distance_m,
    ensure_valid_coordinates,
    validate_location,
)

logger = logging.getLogger("geopunch.geofences")

NAME_INDEX = "uq_geofences_name_live"


@dataclass(frozen=True, slots=True)
class GeofenceOverlap:
    geofence_id: int
    name: str
    distance_m: float


def _resolve_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None or employee.deleted_at is not None:
        raise UnknownEmployeeError(employee_id)
    return employee


def _load_assigned_geofence(db: Session, employee: Employee) -> Geofence | None:
    if employee.geofence_id is None:
        return None
    geofence = db.get(Geofence, employee.geofence_id)
    if geofence is None or geofence.deleted_at is not None:
        raise GeofenceUnavailableError(employee.id, employee.geofence_id)
    return geofence


def resolve_assigned_geofence(db: Session, employee_id: int) -> Geofence | None:
    """Return the geofence that restricts ``employee_id``, or None when nothing applies.

    A dangling or soft-deleted reference is not an error for the caller: the
    employee must still be able to punch, so it degrades to "no restriction".
    Inactive (but not deleted) geofences still apply.
    """
    employee = _resolve_employee(db, employee_id)
    try:
        return _load_assigned_geofence(db, employee)
    except GeofenceUnavailableError as exc:
        logger.warning(
            "assigned_geofence_unavailable",
            extra={"employee_id": exc.employee_id, "geofence_id": exc.geofence_id},
        )
        return None


def find_overlapping_geofences(
    db: Session,
    *,
    latitude: float,
    longitude: float,
    radius_meters: float,
    exclude_geofence_id: int | None = None,
) -> list[GeofenceOverlap]:
    statement = (
        select(Geofence)
        .where(
            Geofence.deleted_at.is_(None),
            Geofence.is_active.is_(True),
        )
        .order_by(Geofence.id.asc())
    )
    if exclude_geofence_id is not None:
        statement = statement.where(Geofence.id != exclude_geofence_id)

    overlaps: list[GeofenceOverlap] = []
    for geofence in db.scalars(statement).all():
        center_distance = distance_m(latitude, longitude, geofence.latitude, geofence.longitude)
        if center_distance < radius_meters + geofence.radius_meters:
            overlaps.append(
                GeofenceOverlap(
                    geofence_id=geofence.id,
                    name=geofence.name,
                    distance_m=center_distance,
                )
            )
    return overlaps


def overlap_warnings(overlaps: list[GeofenceOverlap]) -> list[str]:
    if not overlaps:
        return []
    names = ", ".join(item.name for item in overlaps)
    return [f"This geofence overlaps with {len(overlaps)} existing geofence(s): {names}"]


def _find_live_geofence_id(db: Session, name: str) -> int | None:
    return db.scalar(
        select(Geofence.id).where(
            Geofence.name == name,
            Geofence.deleted_at.is_(None),
        )
    )


def _is_name_violation(exc: IntegrityError) -> bool:
    text_value = str(exc.orig) if exc.orig is not None else str(exc)
    return NAME_INDEX in text_value or "geofences.name" in text_value


def create_geofence(db: Session, payload: GeofenceCreate) -> tuple[Geofence, list[GeofenceOverlap]]:
    if _find_live_geofence_id(db, payload.name) is not None:
        raise GeofenceNameConflictError(payload.name)

    # Overlap is a warning only; the geofence is created regardless.
    overlaps = find_overlapping_geofences(
        db,
        latitude=payload.latitude,
        longitude=payload.longitude,
        radius_meters=payload.radius_meters,
    )

    geofence = Geofence(
        name=payload.name,
        description=payload.description,
        latitude=payload.latitude,
        longitude=payload.longitude,
        radius_meters=payload.radius_meters,
        address=payload.address,
        is_active=True,
    )
    db.add(geofence)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if not _is_name_violation(exc):
            raise
        # A concurrent create took the name between the lookup and the insert.
        raise GeofenceNameConflictError(payload.name) from exc
    db.refresh(geofence)

    logger.info(
        "geofence_created",
        extra={
            "geofence_id": geofence.id,
            "geofence_name": geofence.name,
            "radius_meters": geofence.radius_meters,
            "overlapping_count": len(overlaps),
            "overlapping_ids": [item.geofence_id for item in overlaps],
        },
    )
    return geofence, overlaps


def check_geofence_location(
    db: Session,
    *,
    geofence_id: int,
    lat: float,
    lon: float,
) -> tuple[Geofence, LocationValidationResult]:
    ensure_valid_coordinates(lat, lon)
    geofence = db.get(Geofence, geofence_id)
    if geofence is None or geofence.deleted_at is not None:
        raise GeofenceNotFoundError(geofence_id)
    return geofence, validate_location(lat, lon, geofence)
