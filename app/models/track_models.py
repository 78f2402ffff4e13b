# path: streetview-route-api/app/models/track_models.py

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)
    elevation: Optional[float] = None
    timestamp: Optional[datetime] = None


class Track(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    points: List[GeoPoint]


class RouteMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    description: Optional[str] = None
    time: Optional[datetime] = None


class RouteDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    tracks: List[Track] = Field(min_length=1)
    waypoints: List[GeoPoint] = Field(default_factory=list)
    metadata: Optional[RouteMetadata] = None

    def flatten_points(self) -> List[GeoPoint]:
        # Track order is preserved; segments were already merged per track.
        return [p for track in self.tracks for p in track.points]

    @property
    def display_name(self) -> Optional[str]:
        if self.metadata and self.metadata.name:
            return self.metadata.name
        for track in self.tracks:
            if track.name:
                return track.name
        return None
