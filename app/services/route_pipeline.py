# path: streetview-route-api/app/services/route_pipeline.py

from __future__ import annotations

from typing import Callable, Dict, List, Optional
import logging
import uuid

from app.models.track_models import RouteDocument
from app.models.viewpoint_models import (
    ProgressEvent,
    ProgressStage,
    SamplingConfig,
    ViewRenderOptions,
    Viewpoint,
)
from app.services.route_sampler import generate_viewpoints
from app.services.streetview_client import StreetViewClient
from app.services.track_parser import parse_track_document
from app.services.viewpoint_resolver import ViewpointResolver, ViewpointStateMachine
from app.utils.geo import bbox_wgs84, polyline_length_m


logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]

DEFAULT_ROUTE_NAME = "gpx-route"


class RouteSession:
    """One uploaded track: its parsed document and current viewpoint sequence."""

    def __init__(
        self,
        route_id: str,
        client: StreetViewClient,
        prefetch_delay: float = 0.5,
        name: Optional[str] = None,
    ) -> None:
        self.route_id = route_id
        self.client = client
        self.prefetch_delay = prefetch_delay
        self._name = name
        self.document: Optional[RouteDocument] = None
        self.sampling: Optional[SamplingConfig] = None
        self.pitch = 0.0
        self.store: Optional[ViewpointStateMachine] = None
        self.resolver: Optional[ViewpointResolver] = None
        self._listeners: List[ProgressListener] = []

    @property
    def name(self) -> str:
        if self._name:
            return self._name
        if self.document and self.document.display_name:
            return self.document.display_name
        return DEFAULT_ROUTE_NAME

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, stage: ProgressStage, current: int, total: int, message: str) -> None:
        event = ProgressEvent(stage=stage, current=current, total=total, message=message)
        logger.debug("[%s] %s", self.route_id, message)
        for listener in list(self._listeners):
            listener(event)

    def process(self, text: str, sampling: SamplingConfig, pitch: float = 0.0) -> List[Viewpoint]:
        """Parse a GPX document and build its viewpoint sequence."""
        self._emit(ProgressStage.PARSING, 0, 1, "Extracting route points from GPX data...")
        document = parse_track_document(text)
        self._emit(ProgressStage.PARSING, 1, 1, f"Parsed {len(document.tracks)} track(s)")

        viewpoints = self._generate(document, sampling, pitch)
        self.document = document
        logger.info("Route %s processed: %d viewpoints", self.route_id, len(viewpoints))
        return viewpoints

    def resample(self, sampling: SamplingConfig, pitch: Optional[float] = None) -> List[Viewpoint]:
        """Rebuild the whole viewpoint sequence; previous load state is discarded."""
        if self.document is None:
            raise RuntimeError(f"Route {self.route_id} has no parsed document")
        return self._generate(self.document, sampling, self.pitch if pitch is None else pitch)

    def _generate(self, document: RouteDocument, sampling: SamplingConfig, pitch: float) -> List[Viewpoint]:
        points = document.flatten_points()
        self._emit(ProgressStage.GENERATING, 0, 0, "Generating Street View placeholders...")
        viewpoints = generate_viewpoints(
            points,
            sampling,
            pitch=pitch,
            on_progress=lambda cur, tot: self._emit(
                ProgressStage.GENERATING, cur, tot, f"Generating placeholders ({cur}/{tot})..."
            ),
        )

        self.sampling = sampling
        self.pitch = pitch
        self.store = ViewpointStateMachine(viewpoints)
        self.resolver = ViewpointResolver(self.store, self.client, prefetch_delay=self.prefetch_delay)
        self._emit(
            ProgressStage.COMPLETE,
            len(viewpoints),
            len(viewpoints),
            f"Generated {len(viewpoints)} Street View points - images will load on demand",
        )
        return viewpoints

    async def preload(self, options: ViewRenderOptions, concurrency: int = 4) -> List[Viewpoint]:
        resolver = self.require_resolver()
        total = len(resolver.store)
        self._emit(ProgressStage.LOADING, 0, total, "Loading Street View images...")
        result = await resolver.preload_all(
            options,
            on_progress=lambda cur, tot: self._emit(ProgressStage.LOADING, cur, tot, f"Loading images ({cur}/{tot})..."),
            concurrency=concurrency,
        )
        counts = resolver.store.counts()
        self._emit(
            ProgressStage.COMPLETE,
            total,
            total,
            f"Loaded {counts['loaded']} of {total} images ({counts['failed']} failed)",
        )
        return result

    def require_resolver(self) -> ViewpointResolver:
        if self.resolver is None:
            raise RuntimeError(f"Route {self.route_id} has no viewpoints")
        return self.resolver

    def viewpoints(self) -> List[Viewpoint]:
        return self.store.list() if self.store else []

    def summary(self) -> Dict:
        points = self.document.flatten_points() if self.document else []
        vps = self.viewpoints()
        return {
            "route_id": self.route_id,
            "name": self.name,
            "interval_distance": self.sampling.interval_distance if self.sampling else None,
            "track_count": len(self.document.tracks) if self.document else 0,
            "track_point_count": len(points),
            "waypoint_count": len(self.document.waypoints) if self.document else 0,
            "track_distance_m": polyline_length_m(points),
            "sampled_distance_m": vps[-1].cumulative_distance if vps else 0.0,
            "viewpoint_count": len(vps),
            "load_counts": self.store.counts() if self.store else {},
            "bbox_wgs84": bbox_wgs84(points) if points else None,
            "cursor": self.resolver.cursor if self.resolver else None,
        }


class RouteSessionRegistry:
    """In-memory route sessions, scoped to the application."""

    def __init__(self, client: StreetViewClient, prefetch_delay: float = 0.5) -> None:
        self.client = client
        self.prefetch_delay = prefetch_delay
        self._sessions: Dict[str, RouteSession] = {}

    def create(self, name: Optional[str] = None) -> RouteSession:
        route_id = str(uuid.uuid4())
        return RouteSession(route_id, self.client, prefetch_delay=self.prefetch_delay, name=name)

    def add(self, session: RouteSession) -> None:
        self._sessions[session.route_id] = session

    def get(self, route_id: str) -> RouteSession:
        return self._sessions[route_id]

    def remove(self, route_id: str) -> None:
        self._sessions.pop(route_id, None)

    def __len__(self) -> int:
        return len(self._sessions)
