# path: streetview-route-api/app/api/routes/routes.py

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field

from app.api.deps import get_app_settings, get_registry, get_streetview_client
from app.config import Settings
from app.errors import ExportError, ResolutionError
from app.models.viewpoint_models import (
    ExportOptions,
    ProgressEvent,
    SamplingConfig,
    ViewRenderOptions,
    Viewpoint,
)
from app.services.exporter import (
    DirectorySink,
    IndividualExport,
    estimate_export_size,
    export_archive,
    export_individual,
)
from app.services.route_pipeline import RouteSession, RouteSessionRegistry
from app.services.streetview_client import StreetViewClient
from app.services.track_parser import validate_track_upload
from app.utils.formatting import format_file_size, slugify_route_name

router = APIRouter(prefix="/routes", tags=["routes"])


class RenderRequest(BaseModel):
    image_size: Optional[str] = None
    field_of_view: Optional[float] = None
    pitch: Optional[float] = None
    credential: Optional[str] = None

    def to_options(self, settings: Settings) -> ViewRenderOptions:
        return ViewRenderOptions(
            image_size=self.image_size or settings.default_image_size,
            field_of_view=self.field_of_view if self.field_of_view is not None else settings.default_field_of_view,
            pitch=self.pitch if self.pitch is not None else settings.default_pitch,
            credential=self.credential or settings.api_key,
        )


class CreateRouteRequest(BaseModel):
    gpx: str
    name: Optional[str] = Field(default=None, max_length=120)
    filename: Optional[str] = None
    interval_distance: Optional[float] = Field(default=None, gt=0)
    pitch: Optional[float] = None


class SamplingRequest(BaseModel):
    interval_distance: float = Field(gt=0)
    pitch: Optional[float] = None


class CursorRequest(BaseModel):
    index: int = Field(ge=0)
    render: RenderRequest = Field(default_factory=RenderRequest)


class ExportRequest(BaseModel):
    options: ExportOptions = Field(default_factory=ExportOptions)
    name: Optional[str] = None


class RouteResponse(BaseModel):
    route_id: str
    summary: Dict[str, Any]
    viewpoints: List[Viewpoint]


class CreateRouteResponse(RouteResponse):
    progress: List[ProgressEvent]


class CursorResponse(BaseModel):
    cursor: int
    viewpoint: Viewpoint


class AvailabilityResponse(BaseModel):
    viewpoint_id: str
    available: bool


class ExportEstimateResponse(BaseModel):
    images: int
    estimated_bytes: int
    estimated_size: str


def _session(registry: RouteSessionRegistry, route_id: str) -> RouteSession:
    try:
        return registry.get(route_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown route: {route_id}")


def _route_response(session: RouteSession) -> RouteResponse:
    return RouteResponse(route_id=session.route_id, summary=session.summary(), viewpoints=session.viewpoints())


@router.post("", response_model=CreateRouteResponse)
def create_route(
    req: CreateRouteRequest,
    registry: RouteSessionRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> CreateRouteResponse:
    # Sessions are kept in memory only; nothing is persisted.
    session = registry.create(name=req.name)
    events: List[ProgressEvent] = []
    session.subscribe(events.append)

    sampling = SamplingConfig(interval_distance=req.interval_distance or settings.default_interval_distance)
    pitch = req.pitch if req.pitch is not None else settings.default_pitch
    try:
        if req.filename:
            validate_track_upload(req.filename, len(req.gpx.encode("utf-8")), settings.max_upload_bytes)
        session.process(req.gpx, sampling, pitch=pitch)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    registry.add(session)
    return CreateRouteResponse(
        route_id=session.route_id,
        summary=session.summary(),
        viewpoints=session.viewpoints(),
        progress=events,
    )


@router.get("/{route_id}", response_model=RouteResponse)
def get_route(route_id: str, registry: RouteSessionRegistry = Depends(get_registry)) -> RouteResponse:
    return _route_response(_session(registry, route_id))


@router.put("/{route_id}/sampling", response_model=RouteResponse)
def update_sampling(
    route_id: str,
    req: SamplingRequest,
    registry: RouteSessionRegistry = Depends(get_registry),
) -> RouteResponse:
    session = _session(registry, route_id)
    try:
        session.resample(SamplingConfig(interval_distance=req.interval_distance), pitch=req.pitch)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _route_response(session)


@router.post("/{route_id}/cursor", response_model=CursorResponse)
async def set_cursor(
    route_id: str,
    req: CursorRequest,
    registry: RouteSessionRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> CursorResponse:
    resolver = _session(registry, route_id).require_resolver()
    try:
        viewpoint = await resolver.set_cursor(req.index, req.render.to_options(settings))
    except IndexError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CursorResponse(cursor=req.index, viewpoint=viewpoint)


@router.post("/{route_id}/viewpoints/{viewpoint_id}/resolve", response_model=Viewpoint)
async def resolve_viewpoint(
    route_id: str,
    viewpoint_id: str,
    req: RenderRequest,
    registry: RouteSessionRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> Viewpoint:
    resolver = _session(registry, route_id).require_resolver()
    try:
        resolver.store.get(viewpoint_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown viewpoint: {viewpoint_id}")
    try:
        return await resolver.resolve(viewpoint_id, req.to_options(settings))
    except ResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{route_id}/viewpoints/{viewpoint_id}/availability", response_model=AvailabilityResponse)
async def viewpoint_availability(
    route_id: str,
    viewpoint_id: str,
    credential: Optional[str] = None,
    registry: RouteSessionRegistry = Depends(get_registry),
    client: StreetViewClient = Depends(get_streetview_client),
    settings: Settings = Depends(get_app_settings),
) -> AvailabilityResponse:
    session = _session(registry, route_id)
    try:
        vp = session.require_resolver().store.get(viewpoint_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown viewpoint: {viewpoint_id}")
    key = credential or settings.api_key
    if not key:
        raise HTTPException(status_code=400, detail="Street View API key is required")
    available = await client.check_availability(vp.coordinates, key)
    return AvailabilityResponse(viewpoint_id=viewpoint_id, available=available)


@router.post("/{route_id}/preload", response_model=RouteResponse)
async def preload_route(
    route_id: str,
    req: RenderRequest,
    registry: RouteSessionRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> RouteResponse:
    session = _session(registry, route_id)
    try:
        await session.preload(req.to_options(settings), concurrency=settings.preload_concurrency)
    except ResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _route_response(session)


@router.get("/{route_id}/export/estimate", response_model=ExportEstimateResponse)
def export_estimate(route_id: str, registry: RouteSessionRegistry = Depends(get_registry)) -> ExportEstimateResponse:
    viewpoints = _session(registry, route_id).viewpoints()
    size = estimate_export_size(viewpoints)
    return ExportEstimateResponse(
        images=sum(1 for vp in viewpoints if vp.is_exportable),
        estimated_bytes=size,
        estimated_size=format_file_size(size),
    )


@router.post("/{route_id}/export", response_model=None)
async def export_route(
    route_id: str,
    req: ExportRequest,
    registry: RouteSessionRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> Response | IndividualExport:
    session = _session(registry, route_id)
    route_name = req.name or session.name
    try:
        if req.options.format == "individual":
            sink = DirectorySink(Path(settings.export_dir) / slugify_route_name(route_name) / session.route_id)
            return await export_individual(
                session.viewpoints(),
                req.options,
                route_name,
                session.client,
                sink,
                delay=settings.download_delay_s,
            )
        archive = await export_archive(session.viewpoints(), req.options, route_name, session.client)
    except ExportError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return Response(
        content=archive.content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{archive.filename}"',
            "X-Exported-Images": str(archive.exported),
            "X-Failed-Images": str(archive.failed),
        },
    )
