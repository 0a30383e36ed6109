import unittest

from app.domain import RoutePoint
from app.route_time import estimate_route_time


def _climb(gain: float):
    return [RoutePoint(0.0, 0.0, 0.0), RoutePoint(0.0, 0.0, gain)]


class TestEstimateRouteTime(unittest.TestCase):
    def test_long_hilly_ride(self):
        est = estimate_route_time(80_000, _climb(2500))
        self.assertAlmostEqual(est.adjusted_speed_kmh, 13.0)
        self.assertEqual(est.estimated_time_hours, 6.2)
        self.assertEqual(est.elevation_gain, 2500)

    def test_known_gain_overrides_points(self):
        est = estimate_route_time(80_000, _climb(0), elevation_gain=2500.0)
        self.assertAlmostEqual(est.adjusted_speed_kmh, 13.0)
        self.assertEqual(est.elevation_gain, 2500)
        self.assertEqual(estimate_route_time(80_000, _climb(2500), elevation_gain=0.0).elevation_gain, 0)

    def test_distance_tiers(self):
        flat = _climb(0)
        self.assertAlmostEqual(estimate_route_time(50_001, flat).adjusted_speed_kmh, 20.0)
        self.assertAlmostEqual(estimate_route_time(50_000, flat).adjusted_speed_kmh, 16.0)
        self.assertAlmostEqual(estimate_route_time(20_000, flat).adjusted_speed_kmh, 16.0)
        self.assertAlmostEqual(estimate_route_time(19_999, flat).adjusted_speed_kmh, 12.0)

    def test_climb_multipliers(self):
        self.assertAlmostEqual(estimate_route_time(60_000, _climb(1000)).adjusted_speed_kmh, 20.0)
        self.assertAlmostEqual(estimate_route_time(60_000, _climb(1001)).adjusted_speed_kmh, 16.0)
        self.assertAlmostEqual(estimate_route_time(60_000, _climb(2000)).adjusted_speed_kmh, 16.0)
        self.assertAlmostEqual(estimate_route_time(60_000, _climb(2001)).adjusted_speed_kmh, 13.0)

    def test_rounds_half_up(self):
        # 30 km at 16 km/h is exactly 1.875 h
        self.assertEqual(estimate_route_time(30_000, _climb(0)).estimated_time_hours, 1.9)

    def test_elevation_gain_rounded_to_meter(self):
        self.assertEqual(estimate_route_time(10_000, _climb(100.6)).elevation_gain, 101)

    def test_zero_distance(self):
        est = estimate_route_time(0, [RoutePoint(0.0, 0.0)])
        self.assertEqual(est.estimated_time_hours, 0.0)


if __name__ == "__main__":
    unittest.main()
