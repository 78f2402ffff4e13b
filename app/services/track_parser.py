# path: streetview-route-api/app/services/track_parser.py

from __future__ import annotations

from datetime import datetime
from typing import Iterator, List, Optional
import logging
import math
import xml.etree.ElementTree as ET

from pydantic import TypeAdapter, ValidationError

from app.errors import MalformedDocumentError, NoTracksError
from app.models.track_models import GeoPoint, RouteDocument, RouteMetadata, Track


logger = logging.getLogger(__name__)
_DATETIME = TypeAdapter(datetime)

GPX_EXTENSIONS = (".gpx",)
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def _local(tag: str) -> str:
    # "{http://www.topografix.com/GPX/1/1}trkpt" -> "trkpt"
    return tag.rsplit("}", 1)[-1]


def _children(el: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in el:
        if _local(child.tag) == name:
            yield child


def _child_text(el: ET.Element, name: str) -> Optional[str]:
    for child in _children(el, name):
        text = (child.text or "").strip()
        return text or None
    return None


def _parse_float(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _parse_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return _DATETIME.validate_python(raw.strip())
    except ValidationError:
        return None


def _parse_point(el: ET.Element) -> Optional[GeoPoint]:
    lat = _parse_float(el.get("lat"))
    lon = _parse_float(el.get("lon"))
    if lat is None or lon is None:
        logger.debug("Dropping %s with unparseable lat/lon: %r", _local(el.tag), dict(el.attrib))
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        logger.debug("Dropping %s out of range: lat=%s lon=%s", _local(el.tag), lat, lon)
        return None
    return GeoPoint(
        lat=lat,
        lon=lon,
        elevation=_parse_float(_child_text(el, "ele")),
        timestamp=_parse_time(_child_text(el, "time")),
    )


def _extract_tracks(root: ET.Element) -> List[Track]:
    tracks = []
    for trk in _children(root, "trk"):
        points = []
        for seg in _children(trk, "trkseg"):
            for trkpt in _children(seg, "trkpt"):
                point = _parse_point(trkpt)
                if point is not None:
                    points.append(point)
        if points:
            tracks.append(Track(name=_child_text(trk, "name"), points=points))
        else:
            logger.info("Omitting track %r: no valid points", _child_text(trk, "name"))
    return tracks


def _extract_waypoints(root: ET.Element) -> List[GeoPoint]:
    waypoints = []
    for wpt in _children(root, "wpt"):
        point = _parse_point(wpt)
        if point is not None:
            waypoints.append(point)
    return waypoints


def _extract_metadata(root: ET.Element) -> Optional[RouteMetadata]:
    for meta in _children(root, "metadata"):
        return RouteMetadata(
            name=_child_text(meta, "name"),
            description=_child_text(meta, "desc"),
            time=_parse_time(_child_text(meta, "time")),
        )
    return None


def parse_track_document(text: str) -> RouteDocument:
    """
    Parse GPX text into a RouteDocument.

    Points with a missing or non-numeric lat/lon are dropped; tracks left
    without points are omitted. Raises MalformedDocumentError for non-GPX
    input and NoTracksError when no track survives filtering.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise MalformedDocumentError(f"Invalid XML format: {e}") from e

    if _local(root.tag) != "gpx":
        raise MalformedDocumentError(f"Invalid GPX format: root element is <{_local(root.tag)}>, expected <gpx>")

    tracks = _extract_tracks(root)
    if not tracks:
        raise NoTracksError("No tracks found in GPX file")

    doc = RouteDocument(
        tracks=tracks,
        waypoints=_extract_waypoints(root),
        metadata=_extract_metadata(root),
    )
    logger.info(
        "Parsed GPX: %d track(s), %d point(s), %d waypoint(s)",
        len(doc.tracks),
        sum(len(t.points) for t in doc.tracks),
        len(doc.waypoints),
    )
    return doc


def validate_track_upload(filename: str, size_bytes: int, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> None:
    if not filename.lower().endswith(GPX_EXTENSIONS):
        raise MalformedDocumentError(f"Unsupported file type (expected .gpx): {filename}")
    if size_bytes <= 0:
        raise MalformedDocumentError("Uploaded file is empty")
    if size_bytes > max_bytes:
        raise MalformedDocumentError(f"Uploaded file too large (> {max_bytes} bytes): {size_bytes} bytes")
