# path: streetview-route-api/app/utils/geo.py

from __future__ import annotations

from typing import Dict, Iterable, Protocol, Sequence
import math


EARTH_RADIUS_M = 6371000.0


class LatLon(Protocol):
    lat: float
    lon: float


def haversine_m(a_lon: float, a_lat: float, b_lon: float, b_lat: float) -> float:
    phi1 = math.radians(a_lat)
    phi2 = math.radians(b_lat)
    dphi = math.radians(b_lat - a_lat)
    dlmb = math.radians(b_lon - a_lon)

    s = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, s)))


def bearing_deg_true(a_lon: float, a_lat: float, b_lon: float, b_lat: float) -> float:
    # Initial bearing (forward azimuth), degrees true, [0,360)
    if a_lon == b_lon and a_lat == b_lat:
        return 0.0
    phi1 = math.radians(a_lat)
    phi2 = math.radians(b_lat)
    dlmb = math.radians(b_lon - a_lon)

    y = math.sin(dlmb) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlmb)
    brng = math.degrees(math.atan2(y, x))
    return (brng + 360.0) % 360.0


def distance(a: LatLon, b: LatLon) -> float:
    """Great-circle distance in meters between two points."""
    return haversine_m(a.lon, a.lat, b.lon, b.lat)


def bearing(a: LatLon, b: LatLon) -> float:
    """Initial bearing in degrees from a to b; 0 when a and b coincide."""
    return bearing_deg_true(a.lon, a.lat, b.lon, b.lat)


def bbox_wgs84(points: Iterable[LatLon]) -> Dict[str, float]:
    pts = list(points)
    lons = [p.lon for p in pts]
    lats = [p.lat for p in pts]
    return {
        "min_lat": min(lats),
        "min_lon": min(lons),
        "max_lat": max(lats),
        "max_lon": max(lons),
    }


def polyline_length_m(points: Sequence[LatLon]) -> float:
    total = 0.0
    for i in range(1, len(points)):
        total += distance(points[i - 1], points[i])
    return total
