from __future__ import annotations

import math
import unittest
from unittest.mock import patch

from geopunch.errors import MalformedCoordinatesError
from geopunch.models import Geofence
from geopunch.services.location import (
    EARTH_RADIUS_M,
    NO_RESTRICTION_MESSAGE,
    distance_m,
    ensure_valid_coordinates,
    round_meters,
    validate_location,
)


def _north_of(lat: float, meters: float) -> float:
    return lat + math.degrees(meters / EARTH_RADIUS_M)


def _office(radius_meters: int = 100) -> Geofence:
    return Geofence(id=5, name="Main Office", latitude=40.0, longitude=-74.0, radius_meters=radius_meters)


class DistanceTests(unittest.TestCase):
    def test_distance_m_zero_for_same_point(self) -> None:
        value = distance_m(41.0, 29.0, 41.0, 29.0)
        self.assertAlmostEqual(value, 0.0, places=6)

    def test_distance_m_known_reference(self) -> None:
        # Approximate distance for 1 degree longitude on equator.
        value = distance_m(0.0, 0.0, 0.0, 1.0)
        self.assertAlmostEqual(value, 111_195, delta=300)

    def test_distance_m_is_symmetric(self) -> None:
        v1 = distance_m(41.0082, 28.9784, 39.9334, 32.8597)
        v2 = distance_m(39.9334, 32.8597, 41.0082, 28.9784)
        self.assertAlmostEqual(v1, v2, places=6)
        self.assertGreater(v1, 0)

    def test_distance_m_grows_with_separation(self) -> None:
        near = distance_m(40.0, -74.0, _north_of(40.0, 50), -74.0)
        far = distance_m(40.0, -74.0, _north_of(40.0, 500), -74.0)
        self.assertAlmostEqual(near, 50.0, places=3)
        self.assertLess(near, far)

    def test_distance_m_handles_antipodal_points(self) -> None:
        value = distance_m(0.0, 0.0, 0.0, 180.0)
        self.assertAlmostEqual(value, math.pi * EARTH_RADIUS_M, delta=1)

    def test_round_meters_rounds_half_up(self) -> None:
        self.assertEqual(round_meters(149.5), 150)
        self.assertEqual(round_meters(150.49), 150)
        self.assertEqual(round_meters(0.4), 0)
        self.assertEqual(round_meters(2.5), 3)


class CoordinateCheckTests(unittest.TestCase):
    def test_accepts_range_edges(self) -> None:
        ensure_valid_coordinates(90.0, 180.0)
        ensure_valid_coordinates(-90.0, -180.0)

    def test_rejects_out_of_range_and_non_finite_values(self) -> None:
        for lat, lon in ((91.0, 0.0), (0.0, -180.5), (math.nan, 0.0), (0.0, math.inf)):
            with self.subTest(lat=lat, lon=lon):
                with self.assertRaises(MalformedCoordinatesError) as exc:
                    ensure_valid_coordinates(lat, lon)
                self.assertEqual(exc.exception.status_code, 422)
                self.assertEqual(exc.exception.code, "INVALID_COORDINATES")


class ValidateLocationTests(unittest.TestCase):
    def test_no_geofence_is_always_valid(self) -> None:
        result = validate_location(-33.86, 151.2, None)
        self.assertTrue(result.is_valid)
        self.assertIsNone(result.distance_m)
        self.assertIsNone(result.geofence_id)
        self.assertEqual(result.message, NO_RESTRICTION_MESSAGE)

    def test_center_point_is_valid_at_zero_meters(self) -> None:
        result = validate_location(40.0, -74.0, _office())
        self.assertTrue(result.is_valid)
        self.assertAlmostEqual(result.distance_m, 0.0, places=6)
        self.assertEqual(result.geofence_id, 5)
        self.assertEqual(result.geofence_name, "Main Office")
        self.assertEqual(result.radius_m, 100)
        self.assertEqual(result.message, "Location is within the geofence (0m from center)")
        self.assertIsNone(result.beyond_boundary_m)

    def test_boundary_distance_counts_as_inside(self) -> None:
        with patch("geopunch.services.location.distance_m", return_value=100.0):
            result = validate_location(40.0, -74.0, _office(radius_meters=100))
        self.assertTrue(result.is_valid)
        self.assertEqual(result.message, "Location is within the geofence (100m from center)")

    def test_just_outside_boundary_is_invalid(self) -> None:
        with patch("geopunch.services.location.distance_m", return_value=100.0001):
            result = validate_location(40.0, -74.0, _office(radius_meters=100))
        self.assertFalse(result.is_valid)

    def test_outside_point_reports_distance_beyond_boundary(self) -> None:
        result = validate_location(_north_of(40.0, 250), -74.0, _office())
        self.assertFalse(result.is_valid)
        self.assertAlmostEqual(result.distance_m, 250.0, places=3)
        self.assertAlmostEqual(result.beyond_boundary_m, 150.0, places=3)
        self.assertEqual(result.message, "Location is outside the geofence (150m beyond boundary)")

    def test_log_dict_rounds_distance(self) -> None:
        result = validate_location(_north_of(40.0, 12.3456), -74.0, _office())
        payload = result.to_log_dict()
        self.assertEqual(payload["is_valid_geofence"], True)
        self.assertEqual(payload["distance_m"], 12.35)
        self.assertEqual(payload["geofence_id"], 5)


if __name__ == "__main__":
    unittest.main()
