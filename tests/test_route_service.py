import unittest

from app.domain import UNNAMED_ROUTE
from app.errors import NotFoundError, ParseError
from app.geo import elevation_gain
from app.route_service import RouteService, content_hash
from app.storage.memory import InMemoryRouteRepository

from fakes import FakeClock, NOW, eastward_track, make_gpx, make_settings


class RacingRouteRepository(InMemoryRouteRepository):
    """Another uploader stores the same content between our lookup and our insert."""

    def __init__(self, winner_service_factory):
        super().__init__()
        self._winner_service_factory = winner_service_factory
        self.raced = False

    def create(self, route):
        if not self.raced:
            self.raced = True
            winner = self._winner_service_factory(self)
            super().create(winner)
        return super().create(route)


class TestRouteService(unittest.TestCase):
    def setUp(self):
        self.repo = InMemoryRouteRepository()
        self.service = RouteService(self.repo, make_settings(), clock=FakeClock())
        self.gpx = make_gpx(eastward_track(200))

    def test_upload_stores_simplified_route(self):
        result = self.service.upload(self.gpx, owner_id=7)

        self.assertTrue(result.is_new)
        route = result.route
        self.assertEqual(route.name, "Test Ride")
        self.assertEqual(route.owner_id, 7)
        self.assertEqual(route.created_at, NOW)
        self.assertEqual(route.content_hash, content_hash(self.gpx))
        self.assertGreater(route.distance_meters, 40_000)
        self.assertLess(len(route.points), 200)
        self.assertEqual((route.points[0].lat, route.points[0].lon), (52.0, 13.0))
        self.assertEqual((route.points[-1].lat, route.points[-1].lon), (52.0, 13.597))
        self.assertTrue(route.render_polyline)
        self.assertEqual(self.service.get(route.id).id, route.id)

    def test_elevation_gain_is_measured_on_the_full_track(self):
        # 10 m up on every other point; thinning the track would hide most of it
        track = [(lat, lon, 100.0 + 10 * (i % 2)) for i, (lat, lon, _) in enumerate(eastward_track(200))]
        route = self.service.upload(make_gpx(track), owner_id=7).route

        self.assertEqual(route.elevation_gain, 1000.0)
        self.assertLess(elevation_gain(route.points), 1000.0)

    def test_same_content_resolves_to_one_route(self):
        first = self.service.upload(self.gpx, owner_id=7)
        second = self.service.upload(self.gpx.encode("utf-8"), owner_id=8, file_name="other.gpx")

        self.assertFalse(second.is_new)
        self.assertEqual(first.route.id, second.route.id)
        self.assertEqual(second.route.owner_id, 7)

    def test_unnamed_track_uses_file_name(self):
        gpx = make_gpx(eastward_track(10), name=None)
        self.assertEqual(self.service.upload(gpx, 1, file_name="commute.gpx").route.name, "commute.gpx")

    def test_unnamed_track_without_file_name(self):
        gpx = make_gpx(eastward_track(10), name=None)
        self.assertEqual(self.service.upload(gpx, 1).route.name, UNNAMED_ROUTE)

    def test_parse_error_stores_nothing(self):
        with self.assertRaises(ParseError):
            self.service.upload("<gpx>not closed", owner_id=1)
        self.assertIsNone(self.repo.find_by_hash(content_hash("<gpx>not closed")))

    def test_parse_does_not_store(self):
        parsed = self.service.parse(self.gpx)
        self.assertEqual(len(parsed.points), 200)
        self.assertIsNone(self.repo.find_by_hash(content_hash(self.gpx)))

    def test_get_unknown_route(self):
        with self.assertRaises(NotFoundError):
            self.service.get("missing")

    def test_concurrent_upload_reuses_winner(self):
        gpx = self.gpx

        def winner(repo):
            other = RouteService(InMemoryRouteRepository(), make_settings(), clock=FakeClock())
            return other.upload(gpx, owner_id=99).route

        repo = RacingRouteRepository(winner)
        service = RouteService(repo, make_settings(), clock=FakeClock())

        result = service.upload(gpx, owner_id=7)

        self.assertTrue(repo.raced)
        self.assertFalse(result.is_new)
        self.assertEqual(result.route.owner_id, 99)


if __name__ == "__main__":
    unittest.main()
