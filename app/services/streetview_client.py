# path: streetview-route-api/app/services/streetview_client.py

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urlencode
import logging
import re

import httpx

from app.errors import FetchFailedError, InvalidCredentialFormatError, MissingCredentialError
from app.models.viewpoint_models import Coordinates, ViewRenderOptions


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://maps.googleapis.com/maps/api/streetview"
DEFAULT_METADATA_URL = "https://maps.googleapis.com/maps/api/streetview/metadata"

# Provider keys are ~39 chars of [A-Za-z0-9_-]; format only, never verified here.
API_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{35,45}$")


def validate_api_key(credential: Optional[str]) -> str:
    if not credential:
        raise MissingCredentialError("Street View API key is required")
    if not API_KEY_RE.match(credential):
        raise InvalidCredentialFormatError("Street View API key has an invalid format")
    return credential


def _fmt_number(value: float) -> str:
    # 90.0 -> "90", 12.5 -> "12.5"
    return f"{float(value):g}" if float(value).is_integer() else repr(float(value))


def build_streetview_url(
    coordinates: Coordinates,
    heading: Optional[float],
    options: ViewRenderOptions,
    base_url: str = DEFAULT_BASE_URL,
) -> str:
    params = {
        "size": options.image_size,
        "location": f"{coordinates.lat},{coordinates.lng}",
        "heading": _fmt_number(heading or 0.0),
        "pitch": _fmt_number(options.pitch),
        "fov": _fmt_number(options.field_of_view),
        "key": options.credential or "",
    }
    return f"{base_url}?{urlencode(params)}"


class StreetViewClient:
    """Static street-level imagery provider. One instance per application."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str = DEFAULT_BASE_URL,
        metadata_url: str = DEFAULT_METADATA_URL,
    ) -> None:
        self.http = http
        self.base_url = base_url
        self.metadata_url = metadata_url

    def build_url(self, coordinates: Coordinates, heading: Optional[float], options: ViewRenderOptions) -> str:
        return build_streetview_url(coordinates, heading, options, base_url=self.base_url)

    async def fetch_image(self, url: str) -> Tuple[bytes, Optional[str]]:
        """Return (body, content_type). Raises httpx.HTTPError or FetchFailedError."""
        response = await self.http.get(url)
        response.raise_for_status()
        content_type = response.headers.get("content-type")
        if content_type and not content_type.startswith("image/"):
            raise FetchFailedError(f"Unexpected content type from imagery provider: {content_type}")
        return response.content, content_type

    async def check_availability(self, coordinates: Coordinates, credential: str) -> bool:
        params = {"location": f"{coordinates.lat},{coordinates.lng}", "key": credential}
        try:
            response = await self.http.get(self.metadata_url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to check Street View availability at %s,%s: %s", coordinates.lat, coordinates.lng, e)
            return False
        return data.get("status") == "OK"

    async def aclose(self) -> None:
        await self.http.aclose()
