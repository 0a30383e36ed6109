import datetime as dt
import unittest
from dataclasses import replace

from app.domain import ForecastRequest, ForecastStatus
from app.errors import DataNotReadyError, NotFoundError, RenderError, UpstreamError, ValidationError
from app.forecast_service import ForecastOrchestrator, request_hash
from app.jobs import IMAGE_RENDER_JOB, WEATHER_FETCH_JOB, InMemoryJobQueue
from app.route_service import RouteService
from app.route_time import estimate_route_time
from app.storage.memory import InMemoryForecastRequestRepository, InMemoryRouteRepository

from fakes import TODAY, FakeClock, FakeRenderer, FakeWeatherProvider, eastward_track, make_gpx, make_settings

TOMORROW = TODAY + dt.timedelta(days=1)


class OrchestratorTestCase(unittest.TestCase):
    with_renderer = True

    def setUp(self):
        self.clock = FakeClock()
        self.settings = make_settings()
        self.routes = InMemoryRouteRepository()
        self.requests = self.make_request_repository()
        self.weather = FakeWeatherProvider(wind_direction=90.0, wind_speed=12.0)
        self.renderer = FakeRenderer() if self.with_renderer else None
        self.queue = InMemoryJobQueue(eager=False)
        self.orchestrator = self._orchestrator(self.renderer)
        self.route = RouteService(self.routes, self.settings, clock=self.clock).upload(
            make_gpx(eastward_track(200)), owner_id=1
        ).route

    def make_request_repository(self):
        return InMemoryForecastRequestRepository()

    def _orchestrator(self, renderer):
        orchestrator = ForecastOrchestrator(
            requests=self.requests,
            routes=self.routes,
            weather=self.weather,
            queue=self.queue,
            settings=self.settings,
            renderer=renderer,
            clock=self.clock,
        )
        self.queue.register(WEATHER_FETCH_JOB, orchestrator.execute_weather_fetch)
        self.queue.register(IMAGE_RENDER_JOB, orchestrator.execute_image_render)
        return orchestrator

    def submit(self, date=TOMORROW, start_hour=8, duration_hours=4):
        return self.orchestrator.enqueue(self.route.id, date, start_hour, duration_hours)

    def status(self, request_id):
        return self.orchestrator.get_status(request_id)


class TestQueuedPipeline(OrchestratorTestCase):
    def test_enqueue_creates_pending_request_and_one_job(self):
        result = self.submit()

        self.assertEqual(result.status, "pending")
        self.assertFalse(result.cached)
        self.assertEqual(self.status(result.request_id).status, ForecastStatus.PENDING)
        jobs = self.queue.jobs_named(WEATHER_FETCH_JOB)
        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].payload, {"request_id": result.request_id})
        self.assertEqual(jobs[0].options.attempts, 3)

    def test_fetch_then_render_completes_request(self):
        result = self.submit()
        self.queue.run_pending()

        snapshot = self.status(result.request_id)
        self.assertEqual(snapshot.status, ForecastStatus.COMPLETED)
        self.assertIsNotNone(snapshot.summary)
        self.assertEqual(snapshot.summary.wind_speed_max, 12.0)
        self.assertEqual(snapshot.summary.temperature_min, 10.0)
        self.assertEqual(snapshot.summary.temperature_max, 13.0)
        # eastbound ride into an easterly wind
        self.assertEqual(snapshot.wind_impact.distribution.headwind_percent, 100)
        self.assertEqual(snapshot.wind_impact.distribution.tailwind_percent, 0)
        self.assertGreater(snapshot.estimated_time_hours, 1.0)
        self.assertTrue(snapshot.image_available)
        self.assertEqual(snapshot.fetched_at, self.clock.now)
        self.assertIsNone(snapshot.error)

        image, mime_type = self.orchestrator.get_image(result.request_id)
        self.assertEqual(mime_type, "image/png")
        self.assertTrue(image.startswith(b"\x89PNG"))

        render_input = self.renderer.calls[0]
        self.assertEqual(render_input.route_name, "Test Ride")
        self.assertEqual(render_input.start_hour, 8)
        self.assertGreater(len(render_input.route_geometry), 1)
        self.assertTrue(render_input.wind_markers)

    def test_time_estimate_uses_gain_measured_at_upload(self):
        flat = self.submit()
        self.queue.run_pending()
        self.routes.save(replace(self.route, elevation_gain=2500.0))
        hilly = self.submit(start_hour=9)
        self.queue.run_pending()

        snapshot = self.status(hilly.request_id)
        self.assertEqual(snapshot.elevation_gain, 2500)
        self.assertEqual(
            snapshot.estimated_time_hours,
            estimate_route_time(self.route.distance_meters, [], 2500.0).estimated_time_hours,
        )
        self.assertGreater(snapshot.estimated_time_hours, self.status(flat.request_id).estimated_time_hours)

    def test_fresh_result_is_served_from_cache(self):
        first = self.submit()
        self.queue.run_pending()

        second = self.submit()

        self.assertEqual(second.status, "cached")
        self.assertTrue(second.cached)
        self.assertEqual(second.request_id, first.request_id)
        self.assertEqual(len(self.queue.jobs_named(WEATHER_FETCH_JOB)), 1)
        self.assertEqual(self.weather.forecast_calls, 1)

    def test_stale_result_reuses_row_and_refetches(self):
        first = self.submit()
        self.queue.run_pending()
        self.clock.advance(seconds=self.settings.forecast_cache_ttl_seconds + 1)

        second = self.submit()

        self.assertEqual(second.request_id, first.request_id)
        self.assertFalse(second.cached)
        self.assertEqual(self.status(first.request_id).status, ForecastStatus.PENDING)
        self.queue.run_pending()
        self.assertEqual(self.weather.forecast_calls, 2)
        self.assertEqual(self.status(first.request_id).status, ForecastStatus.COMPLETED)

    def test_different_parameters_get_different_requests(self):
        a = self.submit(start_hour=8)
        b = self.submit(start_hour=9)
        c = self.submit(duration_hours=5)
        self.assertEqual(len({a.request_id, b.request_id, c.request_id}), 3)

    def test_render_before_fetch_is_not_ready_and_leaves_row_alone(self):
        result = self.submit()
        with self.assertRaises(DataNotReadyError):
            self.orchestrator.execute_image_render(result.request_id)
        snapshot = self.status(result.request_id)
        self.assertEqual(snapshot.status, ForecastStatus.PENDING)
        self.assertIsNone(snapshot.error)
        self.assertEqual(self.renderer.calls, [])

    def test_upstream_failure_is_retried_on_the_same_row(self):
        self.weather.fail_with = UpstreamError("provider down")
        self.weather.fail_times = 1
        result = self.submit()

        self.queue.run_pending()

        job = self.queue.jobs_named(WEATHER_FETCH_JOB)[0]
        self.assertEqual(job.attempts_made, 2)
        self.assertEqual(job.retry_delays, [2.0])
        snapshot = self.status(result.request_id)
        self.assertEqual(snapshot.status, ForecastStatus.COMPLETED)
        self.assertIsNone(snapshot.error)

    def test_exhausted_retries_leave_request_failed(self):
        self.weather.fail_with = UpstreamError("provider down")
        self.weather.fail_times = 10
        result = self.submit()

        self.queue.run_pending()

        self.assertEqual(self.weather.timed_calls, 3)
        snapshot = self.status(result.request_id)
        self.assertEqual(snapshot.status, ForecastStatus.FAILED)
        self.assertEqual(snapshot.error, "provider down")
        self.assertIsNone(snapshot.summary)
        self.assertEqual(self.queue.jobs_named(IMAGE_RENDER_JOB), [])

    def test_failed_request_can_be_resubmitted(self):
        self.weather.fail_with = UpstreamError("provider down")
        self.weather.fail_times = 3
        first = self.submit()
        self.queue.run_pending()
        self.assertEqual(self.status(first.request_id).status, ForecastStatus.FAILED)

        second = self.submit()
        self.assertEqual(second.request_id, first.request_id)
        self.assertEqual(self.status(first.request_id).status, ForecastStatus.PENDING)
        self.queue.run_pending()
        self.assertEqual(self.status(first.request_id).status, ForecastStatus.COMPLETED)

    def test_non_retryable_error_fails_without_retry(self):
        self.weather.fail_with = ValidationError("date out of range")
        self.weather.fail_times = 5
        result = self.submit()

        self.queue.run_pending()

        job = self.queue.jobs_named(WEATHER_FETCH_JOB)[0]
        self.assertEqual(job.attempts_made, 1)
        self.assertEqual(self.weather.timed_calls, 1)
        self.assertEqual(self.status(result.request_id).status, ForecastStatus.FAILED)

    def test_missing_route_fails_request(self):
        req = ForecastRequest(id="orphan", route_id="gone", request_hash="x", date=TOMORROW,
                              start_hour=8, duration_hours=2)
        self.requests.create(req)

        self.orchestrator.execute_weather_fetch("orphan")

        snapshot = self.status("orphan")
        self.assertEqual(snapshot.status, ForecastStatus.FAILED)
        self.assertIn("gone", snapshot.error)

    def test_unknown_request_id(self):
        with self.assertRaises(NotFoundError):
            self.orchestrator.execute_weather_fetch("nope")
        with self.assertRaises(NotFoundError):
            self.status("nope")
        with self.assertRaises(NotFoundError):
            self.orchestrator.get_image("nope")

    def test_render_failure_keeps_weather_results(self):
        self.renderer.fail_with = RuntimeError("tile server unreachable")
        result = self.submit()

        self.queue.run_pending()

        render_job = self.queue.jobs_named(IMAGE_RENDER_JOB)[0]
        self.assertEqual(render_job.attempts_made, 2)
        snapshot = self.status(result.request_id)
        self.assertEqual(snapshot.status, ForecastStatus.FAILED)
        self.assertIn("tile server unreachable", snapshot.error)
        self.assertIsNotNone(snapshot.summary)
        self.assertIsNotNone(snapshot.wind_impact)
        self.assertFalse(snapshot.image_available)
        with self.assertRaises(DataNotReadyError):
            self.orchestrator.get_image(result.request_id)

    def test_refetch_drops_previous_image(self):
        first = self.submit()
        self.queue.run_pending()
        self.assertTrue(self.status(first.request_id).image_available)

        self.clock.advance(hours=2)
        self.renderer.fail_with = RenderError("renderer offline")
        self.submit()
        self.queue.run_pending()

        snapshot = self.status(first.request_id)
        self.assertEqual(snapshot.fetched_at, self.clock.now)
        self.assertFalse(snapshot.image_available)


class TestWithoutRenderer(OrchestratorTestCase):
    with_renderer = False

    def test_fetch_completes_request_without_image(self):
        result = self.submit()
        self.queue.run_pending()

        self.assertEqual(self.status(result.request_id).status, ForecastStatus.COMPLETED)
        self.assertEqual(self.queue.jobs_named(IMAGE_RENDER_JOB), [])
        with self.assertRaises(DataNotReadyError):
            self.orchestrator.get_image(result.request_id)

    def test_render_stage_requires_a_renderer(self):
        result = self.submit()
        self.queue.run_pending()
        with self.assertRaises(RenderError):
            self.orchestrator.execute_image_render(result.request_id)

    def test_inline_variant_requires_a_renderer(self):
        with self.assertRaises(RenderError):
            self.orchestrator.forecast_with_image(self.route.id, TOMORROW, 8, 2)


class TestInlineForecast(OrchestratorTestCase):
    def test_forecast_with_image_runs_both_stages(self):
        snapshot, image, mime_type = self.orchestrator.forecast_with_image(self.route.id, TOMORROW, 8, 2)

        self.assertEqual(snapshot.status, ForecastStatus.COMPLETED)
        self.assertTrue(snapshot.image_available)
        self.assertEqual(mime_type, "image/png")
        self.assertTrue(image)
        self.assertEqual(self.queue.jobs, [])

    def test_cached_image_is_returned_without_rerendering(self):
        first, _, _ = self.orchestrator.forecast_with_image(self.route.id, TOMORROW, 8, 2)
        second, image, _ = self.orchestrator.forecast_with_image(self.route.id, TOMORROW, 8, 2)

        self.assertEqual(first.request_id, second.request_id)
        self.assertEqual(len(self.renderer.calls), 1)
        self.assertEqual(self.weather.forecast_calls, 1)
        self.assertTrue(image)

    def test_inline_failure_marks_request_failed(self):
        self.weather.fail_with = UpstreamError("provider down")
        self.weather.fail_times = 1
        with self.assertRaises(UpstreamError):
            self.orchestrator.forecast_with_image(self.route.id, TOMORROW, 8, 2)
        key = request_hash(self.route.id, TOMORROW, 8, 2)
        self.assertEqual(self.requests.find_by_hash(key).status, ForecastStatus.FAILED)

    def test_inline_shares_rows_with_queued_path(self):
        queued = self.submit(duration_hours=2)
        snapshot, _, _ = self.orchestrator.forecast_with_image(self.route.id, TOMORROW, 8, 2)
        self.assertEqual(snapshot.request_id, queued.request_id)


class RacingRequestRepository(InMemoryForecastRequestRepository):
    """Another submitter creates the row between our hash lookup and our insert."""

    def __init__(self):
        super().__init__()
        self.lost_ids = []

    def create(self, request):
        if not self.lost_ids:
            self.lost_ids.append(request.id)
            winner = ForecastRequest(
                id="winner",
                route_id=request.route_id,
                request_hash=request.request_hash,
                date=request.date,
                start_hour=request.start_hour,
                duration_hours=request.duration_hours,
            )
            super().create(winner)
        return super().create(request)


class TestConcurrentSubmission(OrchestratorTestCase):
    def make_request_repository(self):
        return RacingRequestRepository()

    def test_losing_creator_reuses_winning_row(self):
        result = self.submit()

        self.assertEqual(result.request_id, "winner")
        self.assertEqual(result.status, "pending")
        key = request_hash(self.route.id, TOMORROW, 8, 4)
        self.assertEqual(self.requests.find_by_hash(key).id, "winner")
        self.assertIsNone(self.requests.get(self.requests.lost_ids[0]))
        jobs = self.queue.jobs_named(WEATHER_FETCH_JOB)
        self.assertEqual([job.payload for job in jobs], [{"request_id": "winner"}])

        self.queue.run_pending()
        self.assertEqual(self.status("winner").status, ForecastStatus.COMPLETED)


class TestValidation(OrchestratorTestCase):
    def test_out_of_range_parameters(self):
        cases = [
            dict(start_hour=-1),
            dict(start_hour=24),
            dict(duration_hours=0),
            dict(duration_hours=25),
            dict(date=TODAY - dt.timedelta(days=1)),
            dict(date=TODAY + dt.timedelta(days=17)),
        ]
        for kwargs in cases:
            with self.subTest(**{k: str(v) for k, v in kwargs.items()}):
                with self.assertRaises(ValidationError):
                    self.submit(**kwargs)
        self.assertEqual(self.queue.jobs, [])

    def test_boundaries_are_accepted(self):
        self.submit(date=TODAY, start_hour=0, duration_hours=1)
        self.submit(date=TODAY + dt.timedelta(days=16), start_hour=23, duration_hours=24)
        self.assertEqual(len(self.queue.jobs), 2)

    def test_unknown_route(self):
        with self.assertRaises(NotFoundError):
            self.orchestrator.enqueue("missing", TOMORROW, 8, 2)

    def test_request_hash_is_deterministic(self):
        a = request_hash("r", TOMORROW, 8, 2)
        self.assertEqual(a, request_hash("r", TOMORROW, 8, 2))
        self.assertNotEqual(a, request_hash("r", TOMORROW, 8, 3))
        self.assertEqual(len(a), 64)


if __name__ == "__main__":
    unittest.main()
