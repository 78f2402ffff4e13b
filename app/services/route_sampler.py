# path: streetview-route-api/app/services/route_sampler.py

from __future__ import annotations

from typing import Callable, List, Optional, Sequence
import logging
import uuid

from app.errors import InsufficientPointsError, NoSamplesError
from app.models.track_models import GeoPoint
from app.models.viewpoint_models import Coordinates, SamplingConfig, Viewpoint
from app.utils.geo import bearing, distance


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def _new_viewpoint_id() -> str:
    return str(uuid.uuid4())


def sample_points_at_interval(points: Sequence[GeoPoint], config: SamplingConfig) -> List[GeoPoint]:
    """
    Keep the first point, then every point where the distance walked since the
    last kept point reaches config.interval_distance. The last input point is
    always kept.
    """
    if len(points) < 2:
        raise InsufficientPointsError(f"At least 2 track points are required, got {len(points)}")

    sampled = [points[0]]
    accumulated = 0.0
    for i in range(1, len(points)):
        accumulated += distance(points[i - 1], points[i])
        if accumulated >= config.interval_distance:
            sampled.append(points[i])
            accumulated = 0.0

    last = points[-1]
    if (sampled[-1].lat, sampled[-1].lon) != (last.lat, last.lon):
        sampled.append(last)

    return sampled


def generate_viewpoints(
    points: Sequence[GeoPoint],
    config: SamplingConfig,
    pitch: float = 0.0,
    on_progress: Optional[ProgressCallback] = None,
) -> List[Viewpoint]:
    """
    Returns pending viewpoints for the sampled route.

    cumulative_distance sums the legs between consecutive *sampled* points,
    not the distance walked along the dense track.
    """
    sampled = sample_points_at_interval(points, config)
    if not sampled:
        raise NoSamplesError("No valid points found for viewpoint generation")

    viewpoints = []
    total = 0.0
    for i, point in enumerate(sampled):
        if i > 0:
            total += distance(sampled[i - 1], point)
        heading = bearing(point, sampled[i + 1]) if i + 1 < len(sampled) else None

        viewpoints.append(
            Viewpoint(
                id=_new_viewpoint_id(),
                index=i,
                coordinates=Coordinates(lat=point.lat, lng=point.lon),
                heading=heading,
                pitch=float(pitch),
                cumulative_distance=float(total),
            )
        )
        if on_progress:
            on_progress(i + 1, len(sampled))

    logger.info(
        "Sampled %d track points into %d viewpoints at %.1f m (%.1f m sampled length)",
        len(points),
        len(viewpoints),
        config.interval_distance,
        total,
    )
    return viewpoints
