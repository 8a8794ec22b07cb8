"""Pydantic models for the Tristogram service."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from src.tristogram.types import VisualizationMode


class JobStatus(str, Enum):
    """Lifecycle states for clustering jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


class ImageUpload(BaseModel):
    """Either an encoded image file or raw RGBA pixels, base64 encoded."""

    image_base64: Optional[str] = Field(None, description="Encoded image file (PNG, JPEG, ...) in base64")
    rgba_base64: Optional[str] = Field(None, description="Raw row-major RGBA bytes in base64")
    width: Optional[int] = Field(None, ge=0, description="Raster width, required with rgba_base64")
    height: Optional[int] = Field(None, ge=0, description="Raster height, required with rgba_base64")
    name: Optional[str] = Field(None, description="Caller-facing label for the image")
    track_sources: bool = Field(True, description="Keep per-pixel provenance for each color bin")


class HistogramStats(BaseModel):
    histogram_id: str
    source: Optional[str] = None
    nonzero_count: int
    max_count: int
    total_pixels: int
    total_cells: int
    width: int
    height: int


class AttributesResponse(BaseModel):
    histogram_id: str
    mode: VisualizationMode
    positions: List[float] = Field(default_factory=list, description="R, G, B per bin")
    colors: List[float] = Field(default_factory=list, description="R, G, B, A per bin in [0, 1]")
    sizes: List[float] = Field(default_factory=list, description="Point size per bin")


class FilterRequest(BaseModel):
    min_threshold: Optional[float] = Field(0.0, description="Lower bound as a fraction of the max count")
    max_threshold: Optional[float] = Field(1.0, description="Upper bound as a fraction of the max count")
    mode: VisualizationMode = Field(VisualizationMode.OPACITY)


class FilterResponse(BaseModel):
    histogram_id: str
    min_threshold: float
    max_threshold: float
    count_lo: int
    count_hi: int
    indices: List[int] = Field(default_factory=list)
    positions: List[float] = Field(default_factory=list)
    colors: List[float] = Field(default_factory=list)
    sizes: List[float] = Field(default_factory=list)


class ClusterRequest(BaseModel):
    epsilon: float = Field(..., description="Neighborhood radius in RGB units")
    min_points: int = Field(..., description="Other points required within epsilon for a core point")
    min_threshold: Optional[float] = Field(None, description="Restrict clustering to a frequency range")
    max_threshold: Optional[float] = Field(None, description="Restrict clustering to a frequency range")
    neighbor_search: Optional[str] = Field(None, description="auto|brute|kdtree")
    job_id: Optional[str] = Field(None, description="Client-supplied job identifier, usable for stop requests")


class ClusterInfo(BaseModel):
    id: int
    size: int
    members: List[int]
    centroid: List[float]
    total_frequency: int


class ClusterResponse(BaseModel):
    job_id: str
    histogram_id: str
    status: JobStatus
    epsilon: Optional[float] = None
    min_points: Optional[int] = None
    aborted: bool = False
    processed: int = 0
    silhouette: Optional[float] = None
    labels: List[int] = Field(default_factory=list)
    clusters: List[ClusterInfo] = Field(default_factory=list)
    noise: List[int] = Field(default_factory=list)
    detail: Optional[str] = None


class SourcesResponse(BaseModel):
    histogram_id: str
    index: int
    color: List[int]
    count: int
    sources: List[List[int]] = Field(default_factory=list, description="(x, y) pixel coordinates")


class StopRequest(BaseModel):
    reason: Optional[str] = None
