"""Shared fixtures and builders for the test suite."""

from io import BytesIO
from typing import Callable, Iterable, List, Sequence, Tuple

import httpx
import pytest
from PIL import Image

from app.models.viewpoint_models import (
    Coordinates,
    ImageResource,
    LoadState,
    ViewRenderOptions,
    Viewpoint,
)
from app.services.streetview_client import StreetViewClient

API_KEY = "AIzaSy" + "A" * 33  # 39 chars, provider key shape


def jpeg_bytes(color: str = "red", size: Tuple[int, int] = (16, 16)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG", quality=95)
    return buf.getvalue()


def make_gpx(
    tracks: Sequence[Tuple[str, Iterable[Tuple[str, str]]]],
    waypoints: Iterable[Tuple[str, str]] = (),
    metadata: str = "",
) -> str:
    """Build a GPX 1.1 document from (track name, [(lat, lon), ...]) pairs."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">',
        metadata,
    ]
    for lat, lon in waypoints:
        parts.append(f'<wpt lat="{lat}" lon="{lon}"><name>wp</name></wpt>')
    for name, points in tracks:
        parts.append(f"<trk><name>{name}</name><trkseg>")
        for lat, lon in points:
            parts.append(f'<trkpt lat="{lat}" lon="{lon}"><ele>12.5</ele></trkpt>')
        parts.append("</trkseg></trk>")
    parts.append("</gpx>")
    return "\n".join(parts)


def make_viewpoint(index: int, state: LoadState = LoadState.PENDING, url: str = None, distance: float = None) -> Viewpoint:
    resource = None
    error = None
    if state == LoadState.LOADED:
        resource = ImageResource(url=url or f"https://img.test/{index}.jpg", content_type="image/jpeg", size_bytes=1)
    if state == LoadState.FAILED:
        error = "FetchFailed"
    return Viewpoint(
        id=f"vp-{index}",
        index=index,
        coordinates=Coordinates(lat=51.5 + index * 0.001, lng=-0.12),
        heading=90.0,
        cumulative_distance=distance if distance is not None else index * 50.0,
        load_state=state,
        resource=resource,
        error=error,
    )


class RecordingHandler:
    """httpx.MockTransport handler that records requests and serves JPEGs."""

    def __init__(self, fail_when: Callable[[httpx.Request], bool] = lambda r: False) -> None:
        self.requests: List[httpx.Request] = []
        self.fail_when = fail_when
        self.image = jpeg_bytes()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/metadata"):
            return httpx.Response(200, json={"status": "OK"})
        if self.fail_when(request):
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=self.image, headers={"content-type": "image/jpeg"})

    def image_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if not r.url.path.endswith("/metadata")]


def make_client(handler: RecordingHandler) -> StreetViewClient:
    return StreetViewClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def render_options() -> ViewRenderOptions:
    return ViewRenderOptions(image_size="640x640", field_of_view=90, pitch=0, credential=API_KEY)
