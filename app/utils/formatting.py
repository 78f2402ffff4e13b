# path: streetview-route-api/app/utils/formatting.py

from __future__ import annotations

import math
import re


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{int(math.floor(meters + 0.5))}m"
    return f"{meters / 1000:.1f}km"


def format_coordinates(lat: float, lng: float) -> str:
    return f"{lat:.6f}, {lng:.6f}"


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    sizes = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(num_bytes, 1024))), len(sizes) - 1)
    value = round(num_bytes / 1024**i, 2)
    return f"{value:g} {sizes[i]}"


def slugify_route_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE).lower()


def sequence_number(number: int) -> str:
    # 1-based position in the export -> "001"
    return str(number).zfill(3)
