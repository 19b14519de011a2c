from __future__ import annotations

import unittest
from types import SimpleNamespace

from callup.services.location import distance_m, find_matching_zone, is_within_any_zone

CENTER = (37.5665, 126.9780)


def _zone(radius_m: float, *, is_active: bool = True, lat: float = CENTER[0], lon: float = CENTER[1], name: str = "zone"):  # type: ignore[no-untyped-def]
    return SimpleNamespace(latitude=lat, longitude=lon, radius_m=radius_m, is_active=is_active, name=name)


class LocationServiceTests(unittest.TestCase):
    def test_distance_m_zero_for_same_point(self) -> None:
        value = distance_m(*CENTER, *CENTER)
        self.assertAlmostEqual(value, 0.0, places=6)

    def test_distance_m_known_reference(self) -> None:
        # Approximate distance for 1 degree longitude on equator.
        value = distance_m(0.0, 0.0, 0.0, 1.0)
        self.assertAlmostEqual(value, 111_195, delta=300)

    def test_zero_radius_matches_only_center(self) -> None:
        self.assertTrue(is_within_any_zone(*CENTER, [_zone(0)]))
        self.assertFalse(is_within_any_zone(CENTER[0] + 0.0001, CENTER[1], [_zone(0)]))

    def test_boundary_is_inclusive(self) -> None:
        point = (CENTER[0] + 0.001, CENTER[1])
        edge = distance_m(CENTER[0], CENTER[1], *point)

        self.assertTrue(is_within_any_zone(*point, [_zone(edge)]))
        self.assertFalse(is_within_any_zone(*point, [_zone(edge - 1)]))

    def test_inactive_zone_never_matches(self) -> None:
        self.assertFalse(is_within_any_zone(*CENTER, [_zone(10_000, is_active=False)]))

    def test_no_zones(self) -> None:
        self.assertFalse(is_within_any_zone(*CENTER, []))

    def test_returns_first_matching_zone(self) -> None:
        far = _zone(50, lat=35.1796, lon=129.0756, name="far")
        gate = _zone(200, name="gate")
        hall = _zone(500, name="hall")

        matched = find_matching_zone(*CENTER, [far, gate, hall])

        self.assertIs(matched, gate)


if __name__ == "__main__":
    unittest.main()
