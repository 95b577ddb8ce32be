from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from geopunch.models import PunchKind, PunchSession, PunchState
from geopunch.services.location import LocationValidationResult, round_meters


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _round_hours(value: float | None) -> float | None:
    if value is None:
        return None
    return round(value, 2)


class PunchRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class PunchSessionRead(BaseModel):
    id: int
    employee_id: int
    geofence_id: int | None = None
    punch_in_ts_utc: datetime
    punch_in_lat: float
    punch_in_lon: float
    punch_in_valid_geofence: bool
    punch_in_distance_m: float | None = None
    punch_out_ts_utc: datetime | None = None
    punch_out_lat: float | None = None
    punch_out_lon: float | None = None
    punch_out_valid_geofence: bool | None = None
    punch_out_distance_m: float | None = None
    break_start_ts_utc: datetime | None = None
    break_end_ts_utc: datetime | None = None
    notes: str | None = None
    worked_hours: float | None = None
    break_hours: float | None = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator(
        "punch_in_ts_utc",
        "punch_out_ts_utc",
        "break_start_ts_utc",
        "break_end_ts_utc",
    )
    @classmethod
    def ensure_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("punch_in_distance_m", "punch_out_distance_m")
    @classmethod
    def round_distance(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return round(value, 2)

    @classmethod
    def from_session(
        cls,
        session: PunchSession,
        *,
        worked_hours: float | None,
        break_hours: float | None,
    ) -> PunchSessionRead:
        read = cls.model_validate(session)
        read.worked_hours = _round_hours(worked_hours)
        read.break_hours = _round_hours(break_hours)
        return read


class LocationValidationRead(BaseModel):
    is_valid: bool
    distance_m: int | None = None
    geofence_id: int | None = None
    geofence_name: str | None = None
    allowed_radius_m: int | None = None
    message: str

    @classmethod
    def from_result(cls, validation: LocationValidationResult) -> LocationValidationRead:
        distance = validation.distance_m
        return cls(
            is_valid=validation.is_valid,
            distance_m=round_meters(distance) if distance is not None else None,
            geofence_id=validation.geofence_id,
            geofence_name=validation.geofence_name,
            allowed_radius_m=validation.radius_m,
            message=validation.message,
        )


class PunchTransitionResponse(BaseModel):
    message: str
    kind: PunchKind
    previous_state: PunchState
    state: PunchState
    session: PunchSessionRead
    location_validation: LocationValidationRead


class PunchTodayStats(BaseModel):
    total_sessions: int
    hours_worked: float


class PunchStatusResponse(BaseModel):
    employee_id: int
    state: PunchState
    is_punched_in: bool
    is_on_break: bool
    current_session: PunchSessionRead | None = None
    today: PunchTodayStats


class GeofenceCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_meters: int = Field(ge=10, le=10000)
    description: str | None = Field(default=None, max_length=500)
    address: str | None = Field(default=None, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if len(stripped) < 2:
            raise ValueError("Name must be between 2 and 100 characters")
        return stripped


class GeofenceRead(BaseModel):
    id: int
    name: str
    description: str | None = None
    latitude: float
    longitude: float
    radius_meters: int
    address: str | None = None
    is_active: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class GeofenceOverlapRead(BaseModel):
    geofence_id: int
    name: str


class GeofenceCreateResponse(BaseModel):
    geofence: GeofenceRead
    overlapping_geofences: list[GeofenceOverlapRead]
    warnings: list[str]


class GeofenceTestRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class GeofenceTestResponse(BaseModel):
    geofence: GeofenceRead
    latitude: float
    longitude: float
    result: LocationValidationRead
