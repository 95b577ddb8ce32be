from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, floor, isfinite, radians, sin, sqrt

from geopunch.errors import MalformedCoordinatesError
from geopunch.models import Geofence

EARTH_RADIUS_M = 6371000.0

NO_RESTRICTION_MESSAGE = "No geofence restriction"


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters (haversine). No rounding."""
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Float noise can push `a` a hair above 1 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def round_meters(value: float) -> int:
    # Half-up rather than banker's rounding: 149.5 -> 150.
    return int(floor(value + 0.5))


def ensure_valid_coordinates(lat: float, lon: float) -> None:
    if not (isfinite(lat) and isfinite(lon)):
        raise MalformedCoordinatesError(lat, lon)
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise MalformedCoordinatesError(lat, lon)


@dataclass(frozen=True, slots=True)
class LocationValidationResult:
    is_valid: bool
    distance_m: float | None
    geofence_id: int | None
    geofence_name: str | None
    radius_m: int | None
    message: str

    @property
    def beyond_boundary_m(self) -> float | None:
        if self.distance_m is None or self.radius_m is None or self.is_valid:
            return None
        return self.distance_m - self.radius_m

    def to_log_dict(self) -> dict[str, float | int | str | bool | None]:
        return {
            "is_valid_geofence": self.is_valid,
            "distance_m": round(self.distance_m, 2) if self.distance_m is not None else None,
            "geofence_id": self.geofence_id,
            "geofence_name": self.geofence_name,
        }


def validate_location(lat: float, lon: float, geofence: Geofence | None) -> LocationValidationResult:
    if geofence is None:
        return LocationValidationResult(
            is_valid=True,
            distance_m=None,
            geofence_id=None,
            geofence_name=None,
            radius_m=None,
            message=NO_RESTRICTION_MESSAGE,
        )

    distance_value = distance_m(lat, lon, geofence.latitude, geofence.longitude)
    is_valid = distance_value <= geofence.radius_meters
    if is_valid:
        message = f"Location is within the geofence ({round_meters(distance_value)}m from center)"
    else:
        message = (
            "Location is outside the geofence "
            f"({round_meters(distance_value - geofence.radius_meters)}m beyond boundary)"
        )

    return LocationValidationResult(
        is_valid=is_valid,
        distance_m=distance_value,
        geofence_id=geofence.id,
        geofence_name=geofence.name,
        radius_m=geofence.radius_meters,
        message=message,
    )
