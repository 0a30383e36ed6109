"""Hand-written fakes and builders shared by the test modules."""

import datetime as dt
from typing import Dict, List, Optional, Sequence, Tuple

from app.config import Settings
from app.domain import HourlyForecast, RoutePoint, coords_key

UTC = dt.timezone.utc
NOW = dt.datetime(2025, 6, 1, 8, 0, tzinfo=UTC)
TODAY = NOW.date()


def make_gpx(points: Sequence[Tuple[float, float, Optional[float]]], name: Optional[str] = "Test Ride") -> str:
    """Build a single-track GPX document."""
    name_xml = f"<name>{name}</name>" if name else ""
    pts = []
    for lat, lon, ele in points:
        ele_xml = f"<ele>{ele}</ele>" if ele is not None else ""
        pts.append(f'<trkpt lat="{lat}" lon="{lon}">{ele_xml}</trkpt>')
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">'
        f"<trk>{name_xml}<trkseg>{''.join(pts)}</trkseg></trk></gpx>"
    )


def eastward_track(n: int = 200, lat: float = 52.0, start_lon: float = 13.0, step: float = 0.003,
                   ele: Optional[float] = 100.0) -> List[Tuple[float, float, Optional[float]]]:
    """Points heading due East; 0.003 deg of longitude at 52N is about 206 m."""
    return [(lat, round(start_lon + i * step, 6), ele) for i in range(n)]


def eastward_points(n: int = 200, **kwargs) -> List[RoutePoint]:
    return [RoutePoint(lat=lat, lon=lon, elevation=ele) for lat, lon, ele in eastward_track(n, **kwargs)]


def hour(time: dt.datetime, wind_direction: float = 90.0, wind_speed: float = 10.0, temperature: float = 15.0,
         precipitation: float = 0.0, precipitation_probability: float = 10.0) -> HourlyForecast:
    return HourlyForecast(
        time=time,
        temperature=temperature,
        apparent_temperature=temperature - 1,
        precipitation=precipitation,
        precipitation_probability=precipitation_probability,
        wind_speed=wind_speed,
        wind_direction=wind_direction,
        wind_gusts=wind_speed + 5,
        weather_code=1,
    )


class FakeWeatherProvider:
    """Uniform weather everywhere; can be told to fail the next N calls."""

    def __init__(self, wind_direction: float = 90.0, wind_speed: float = 10.0) -> None:
        self.wind_direction = wind_direction
        self.wind_speed = wind_speed
        self.fail_with: Optional[Exception] = None
        self.fail_times = 0
        self.forecast_calls = 0
        self.timed_calls = 0

    def _maybe_fail(self) -> None:
        if self.fail_with is not None and self.fail_times > 0:
            self.fail_times -= 1
            raise self.fail_with

    def fetch_forecast(self, coordinates, date, start_hour, duration_hours) -> Dict[str, List[HourlyForecast]]:
        self.forecast_calls += 1
        self._maybe_fail()
        base = dt.datetime.combine(date, dt.time(start_hour))
        out: Dict[str, List[HourlyForecast]] = {}
        for c in coordinates:
            out.setdefault(coords_key(c.lat, c.lon), [
                hour(base + dt.timedelta(hours=i), self.wind_direction, self.wind_speed, temperature=10.0 + i)
                for i in range(duration_hours)
            ])
        return out

    def fetch_timed_forecast(self, coordinates, date, start_hour) -> Dict[str, HourlyForecast]:
        self.timed_calls += 1
        self._maybe_fail()
        base = dt.datetime.combine(date, dt.time(start_hour))
        return {
            coords_key(c.lat, c.lon): hour(base + dt.timedelta(hours=round(c.hour_offset)),
                                           self.wind_direction, self.wind_speed)
            for c in coordinates
        }


class FakeRenderer:
    """Records render inputs and returns a tiny fake PNG."""

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.fail_with = fail_with
        self.calls = []

    def render_map(self, data):
        self.calls.append(data)
        if self.fail_with is not None:
            raise self.fail_with
        return b"\x89PNG fake", "image/png"


class FakeClock:
    def __init__(self, now: dt.datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    """Memory backends, eager queue, no renderer, unless overridden."""
    values = dict(
        storage_backend="memory",
        queue_backend="memory",
        queue_eager=True,
        map_renderer=None,
        api_key=None,
        redis_url=None,
    )
    values.update(overrides)
    return Settings(**values)
