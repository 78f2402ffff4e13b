# path: streetview-route-api/app/services/exporter.py

from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence
import asyncio
import json
import logging
import math
import zipfile

import httpx
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from app.errors import ArchiveGenerationFailedError, FetchFailedError, NothingToExportError
from app.models.viewpoint_models import ExportOptions, LoadState, Viewpoint
from app.services.streetview_client import StreetViewClient
from app.utils.formatting import format_coordinates, format_distance, sequence_number, slugify_route_name


logger = logging.getLogger(__name__)

AVERAGE_IMAGE_BYTES = 150 * 1024  # 640x640 JPEG
JPEG_QUALITY = {"medium": 85, "low": 60}


class DownloadSink(Protocol):
    def save(self, filename: str, data: bytes) -> None: ...


class DirectorySink:
    """Writes each downloaded image into a directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def save(self, filename: str, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        (self.directory / filename).write_bytes(data)


class ArchiveExport(BaseModel):
    filename: str
    content: bytes
    exported: int
    failed: int


class IndividualExport(BaseModel):
    filenames: List[str]
    exported: int
    failed: int


def exportable(viewpoints: Sequence[Viewpoint]) -> List[Viewpoint]:
    return [vp for vp in viewpoints if vp.is_exportable]


def image_filename(vp: Viewpoint, number: int) -> str:
    return f"{sequence_number(number)}_{format_distance(vp.cumulative_distance)}.jpg"


def apply_quality(data: bytes, quality: str) -> bytes:
    if quality not in JPEG_QUALITY:
        return data
    with Image.open(BytesIO(data)) as img:
        out = BytesIO()
        img.convert("RGB").save(out, format="JPEG", quality=JPEG_QUALITY[quality])
    return out.getvalue()


async def _fetch_bytes(client: StreetViewClient, vp: Viewpoint, quality: str) -> bytes:
    body, _ = await client.fetch_image(vp.resource.url)
    return apply_quality(body, quality)


def _route_total_distance(viewpoints: Sequence[Viewpoint]) -> float:
    return viewpoints[-1].cumulative_distance if viewpoints else 0.0


def generate_metadata(viewpoints: Sequence[Viewpoint], route_name: str) -> Dict[str, Any]:
    return {
        "routeName": route_name,
        "exportDate": datetime.now(timezone.utc).isoformat(),
        "totalImages": len(viewpoints),
        "successfulImages": sum(1 for vp in viewpoints if vp.is_exportable),
        "totalDistance": _route_total_distance(viewpoints),
        "images": [
            {
                "index": n,
                "filename": image_filename(vp, n),
                "coordinates": format_coordinates(vp.coordinates.lat, vp.coordinates.lng),
                "heading": vp.heading,
                "distance": vp.cumulative_distance,
                "loaded": vp.load_state == LoadState.LOADED,
                "error": vp.error,
            }
            for n, vp in enumerate(viewpoints, start=1)
        ],
    }


def generate_route_info(viewpoints: Sequence[Viewpoint], route_name: str) -> str:
    successful = [vp for vp in viewpoints if vp.is_exportable]
    total_distance = _route_total_distance(viewpoints)

    lines = [
        f"GPX Street View Export - {route_name}",
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "Route Statistics:",
        f"- Total Distance: {format_distance(total_distance)}",
        f"- Total Images: {len(viewpoints)}",
        f"- Successful Images: {len(successful)}",
        f"- Failed Images: {len(viewpoints) - len(successful)}",
        "",
    ]
    if successful:
        lines.append("Image Details:")
        lines.append(f"{'#':<4} {'Distance':<10} {'Coordinates':<20} {'Heading':<8}")
        lines.append("-" * 50)
        for n, vp in enumerate(successful, start=1):
            heading = f"{int(math.floor((vp.heading or 0) + 0.5))}°"
            coords = format_coordinates(vp.coordinates.lat, vp.coordinates.lng)
            lines.append(f"{n:<4} {format_distance(vp.cumulative_distance):<10} {coords:<20} {heading:<8}")
    return "\n".join(lines) + "\n"


async def export_archive(
    viewpoints: Sequence[Viewpoint],
    options: ExportOptions,
    route_name: str,
    client: StreetViewClient,
) -> ArchiveExport:
    """
    Bundle loaded viewpoints into a zip: images/NNN_<distance>.jpg plus, when
    requested, metadata.json and route_info.txt. Images are fetched one at a
    time in route order; fetch failures are skipped.
    """
    items = exportable(viewpoints)
    if not items:
        raise NothingToExportError("No loaded images to export")

    buffer = BytesIO()
    exported = failed = 0
    try:
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for n, vp in enumerate(items, start=1):
                try:
                    data = await _fetch_bytes(client, vp, options.quality)
                except (httpx.HTTPError, FetchFailedError, UnidentifiedImageError, OSError) as e:
                    failed += 1
                    logger.warning("Failed to add image %d to archive: %s", n, e)
                    continue
                zf.writestr(f"images/{image_filename(vp, n)}", data)
                exported += 1

            if exported == 0:
                raise ArchiveGenerationFailedError(f"None of the {len(items)} images could be fetched")

            if options.include_metadata:
                zf.writestr("metadata.json", json.dumps(generate_metadata(items, route_name), indent=2))
                zf.writestr("route_info.txt", generate_route_info(items, route_name))
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ArchiveGenerationFailedError(f"Failed to generate ZIP file: {e}") from e

    logger.info("Archive export for %r: %d exported, %d failed", route_name, exported, failed)
    return ArchiveExport(
        filename=f"{slugify_route_name(route_name)}_street_view.zip",
        content=buffer.getvalue(),
        exported=exported,
        failed=failed,
    )


async def export_individual(
    viewpoints: Sequence[Viewpoint],
    options: ExportOptions,
    route_name: str,
    client: StreetViewClient,
    sink: DownloadSink,
    delay: float = 0.1,
) -> IndividualExport:
    items = exportable(viewpoints)
    if not items:
        raise NothingToExportError("No loaded images to export")

    filenames = []
    failed = 0
    for n, vp in enumerate(items, start=1):
        filename = f"{slugify_route_name(route_name)}_{image_filename(vp, n)}"
        try:
            data = await _fetch_bytes(client, vp, options.quality)
            sink.save(filename, data)
        except (httpx.HTTPError, FetchFailedError, UnidentifiedImageError, OSError) as e:
            failed += 1
            logger.warning("Failed to download image %d: %s", n, e)
            continue
        filenames.append(filename)
        await asyncio.sleep(delay)

    logger.info("Individual export for %r: %d exported, %d failed", route_name, len(filenames), failed)
    return IndividualExport(filenames=filenames, exported=len(filenames), failed=failed)


def estimate_export_size(viewpoints: Sequence[Viewpoint], average_image_bytes: Optional[int] = None) -> int:
    return len(exportable(viewpoints)) * (average_image_bytes or AVERAGE_IMAGE_BYTES)
