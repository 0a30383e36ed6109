"""HTTP polling surface for route uploads and forecast requests."""

import datetime as dt
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.config import settings
from app.container import get_services
from app.domain import EnqueueResult, ForecastSnapshot
from app.errors import (
    DataNotReadyError,
    NotFoundError,
    ParseError,
    QuotaError,
    RenderError,
    UpstreamError,
    ValidationError,
    WindlineError,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="app/api")

ERROR_STATUS = {
    ParseError: status.HTTP_400_BAD_REQUEST,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    UpstreamError: status.HTTP_502_BAD_GATEWAY,
    RenderError: status.HTTP_502_BAD_GATEWAY,
    QuotaError: status.HTTP_429_TOO_MANY_REQUESTS,
    DataNotReadyError: status.HTTP_409_CONFLICT,
}


def status_for(exc: WindlineError) -> int:
    """HTTP status for a domain error; unknown subclasses are server errors."""
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def windline_error_handler(request: Request, exc: WindlineError) -> JSONResponse:
    """Render domain errors as JSON with the mapped status code."""
    code = status_for(exc)
    if code >= 500:
        logger.warning("Request failed", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": exc.__class__.__name__})


def require_api_key(x_api_key: str | None = Header(default=None)):
    """
    Validate X-API-Key header against the configured api_key setting.
    """
    # If no key configured, allow requests (dev/default mode).
    if not settings.api_key:
        logger.debug("No API key configured; allowing all requests")
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter(dependencies=[Depends(require_api_key)])


class UploadRouteRequest(BaseModel):
    """Incoming track upload."""
    gpx_content: str = Field(min_length=1)
    owner_id: int = Field(gt=0)
    file_name: Optional[str] = None


class UploadRouteResponse(BaseModel):
    id: str
    name: str
    distance_meters: int
    points_count: int
    is_new: bool


class ParseRouteRequest(BaseModel):
    gpx_content: str = Field(min_length=1)


class ParseRouteResponse(BaseModel):
    """Preview of a parsed track; nothing is stored."""
    name: str
    distance_meters: int
    points_count: int


class RouteResponse(BaseModel):
    id: str
    owner_id: int
    name: str
    distance_meters: int
    points_count: int
    render_polyline: str
    created_at: dt.datetime


class ForecastRequestBody(BaseModel):
    """Forecast parameters; ranges are checked by the orchestrator."""
    route_id: str = Field(min_length=1)
    date: dt.date
    start_hour: int
    duration_hours: int


@router.post("/routes", response_model=UploadRouteResponse)
def upload_route(req: UploadRouteRequest):
    """Store a track, or return the route already stored for identical content."""
    result = get_services().routes.upload(req.gpx_content, req.owner_id, req.file_name)
    route = result.route
    return UploadRouteResponse(
        id=route.id,
        name=route.name,
        distance_meters=route.distance_meters,
        points_count=len(route.points),
        is_new=result.is_new,
    )


@router.post("/routes/parse", response_model=ParseRouteResponse)
def parse_route(req: ParseRouteRequest):
    parsed = get_services().routes.parse(req.gpx_content)
    return ParseRouteResponse(name=parsed.name, distance_meters=parsed.distance_meters, points_count=len(parsed.points))


@router.get("/routes/{route_id}", response_model=RouteResponse)
def get_route(route_id: str):
    route = get_services().routes.get(route_id)
    return RouteResponse(
        id=route.id,
        owner_id=route.owner_id,
        name=route.name,
        distance_meters=route.distance_meters,
        points_count=len(route.points),
        render_polyline=route.render_polyline,
        created_at=route.created_at,
    )


@router.post("/forecasts", response_model=EnqueueResult)
def create_forecast(req: ForecastRequestBody):
    """Queue a forecast request, or report a cache hit."""
    return get_services().forecasts.enqueue(req.route_id, req.date, req.start_hour, req.duration_hours)


@router.post("/forecasts/image")
def create_forecast_image(req: ForecastRequestBody):
    """Run the forecast and render the map inline, returning the image bytes."""
    snapshot, image, mime_type = get_services().forecasts.forecast_with_image(
        req.route_id, req.date, req.start_hour, req.duration_hours
    )
    return Response(content=image, media_type=mime_type, headers={"X-Request-Id": snapshot.request_id})


@router.get("/forecasts/{request_id}", response_model=ForecastSnapshot)
def get_forecast(request_id: str):
    return get_services().forecasts.get_status(request_id)


@router.get("/forecasts/{request_id}/image")
def get_forecast_image(request_id: str):
    """Stream the stored image once the render stage has completed."""
    image, mime_type = get_services().forecasts.get_image(request_id)
    return Response(content=image, media_type=mime_type)
