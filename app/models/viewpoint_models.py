# path: streetview-route-api/app/models/viewpoint_models.py

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LoadState(str, Enum):
    PENDING = "pending"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class ImageResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    content_type: Optional[str] = None
    size_bytes: int = Field(default=0, ge=0)


class Viewpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    index: int = Field(ge=0)
    coordinates: Coordinates
    heading: Optional[float] = Field(default=None, ge=0, lt=360)
    pitch: float = 0.0
    cumulative_distance: float = Field(ge=0)
    load_state: LoadState = LoadState.PENDING
    resource: Optional[ImageResource] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def validate_state_payload(self):
        if (self.resource is not None) != (self.load_state == LoadState.LOADED):
            raise ValueError("resource must be present iff load_state is loaded")
        if (self.error is not None) != (self.load_state == LoadState.FAILED):
            raise ValueError("error must be present iff load_state is failed")
        return self

    @property
    def is_exportable(self) -> bool:
        return self.load_state == LoadState.LOADED and self.error is None and self.resource is not None


class SamplingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    interval_distance: float = Field(gt=0)


class ViewRenderOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    image_size: str = "640x640"
    field_of_view: float = Field(default=90.0, gt=0, le=120)
    pitch: float = Field(default=0.0, ge=-90, le=90)
    credential: Optional[str] = None

    @field_validator("image_size")
    @classmethod
    def validate_image_size(cls, v: str) -> str:
        parts = v.lower().split("x")
        if len(parts) != 2 or not all(p.isdigit() and int(p) > 0 for p in parts):
            raise ValueError(f"image_size must look like WxH: {v!r}")
        return v.lower()


ExportFormat = Literal["archive", "individual"]
ExportQuality = Literal["high", "medium", "low"]


class ExportOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: ExportFormat = "archive"
    include_metadata: bool = True
    quality: ExportQuality = "high"


class ProgressStage(str, Enum):
    PARSING = "parsing"
    GENERATING = "generating"
    LOADING = "loading"
    COMPLETE = "complete"


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: ProgressStage
    current: int = Field(ge=0)
    total: int = Field(ge=0)
    message: str
