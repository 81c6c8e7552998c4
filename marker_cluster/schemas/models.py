"""Pydantic models for payloads crossing the worker process boundary."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from ..exceptions import PayloadFormatError

# Deepest zoom accepted in requests; pixel coordinates stay well inside float range
MAX_SUPPORTED_ZOOM = 30


class GeoPoint(BaseModel):
    """Latitude/longitude container in wire form."""

    latitude: float = Field(..., ge=-90.0, le=90.0, description="Latitude in decimal degrees")
    longitude: float = Field(..., description="Longitude in decimal degrees")

    model_config = {"allow_inf_nan": False}


class MarkerAnchor(BaseModel):
    left: float
    top: float

    model_config = {"allow_inf_nan": False}


class MarkerPayload(BaseModel):
    """One marker: a position plus display metadata the engine never reads."""

    point: GeoPoint
    width: float
    height: float
    anchor: MarkerAnchor

    model_config = {"allow_inf_nan": False}


class RecalculateRequest(BaseModel):
    """Self-contained description of one clustering computation."""

    min_zoom: int = Field(..., ge=0, le=MAX_SUPPORTED_ZOOM, alias="minZoom")
    max_zoom: int = Field(..., ge=0, le=MAX_SUPPORTED_ZOOM, alias="maxZoom")
    zoom: float = Field(
        ..., ge=0, le=MAX_SUPPORTED_ZOOM, description="Display zoom, seeds the projection context"
    )
    max_cluster_radius: int = Field(..., gt=0, alias="maxClusterRadius")
    markers: List[MarkerPayload]

    model_config = {"populate_by_name": True, "allow_inf_nan": False}

    @property
    def zoom_levels(self) -> int:
        """Number of per-zoom grids the request needs (0 when bounds are inverted)."""
        return max(0, self.max_zoom - self.min_zoom + 1)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, text: str | bytes) -> "RecalculateRequest":
        """Decode a JSON request, raising :class:`PayloadFormatError` on bad input."""
        try:
            return cls.model_validate_json(text)
        except ValidationError as exc:
            raise PayloadFormatError(f"Invalid recalculate request: {exc}") from exc

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "RecalculateRequest":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise PayloadFormatError(f"Invalid recalculate request: {exc}") from exc


# -----------------------------
# Response payloads
# -----------------------------

class BoundsPayload(BaseModel):
    south: float
    west: float
    north: float
    east: float


class TreeNodePayload(BaseModel):
    """A node of the serialised arena; leaf-only and cluster-only fields are optional."""

    id: int = Field(..., ge=0)
    kind: Literal["cluster", "leaf"]
    parent: Optional[int] = None

    zoom: Optional[int] = None
    children: List[int] = Field(default_factory=list)
    bounds: Optional[BoundsPayload] = None
    centroid: Optional[GeoPoint] = None

    index: Optional[int] = None
    point: Optional[GeoPoint] = None
    width: Optional[float] = None
    height: Optional[float] = None
    anchor: Optional[MarkerAnchor] = None

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "TreeNodePayload":
        if self.kind == "cluster" and self.zoom is None:
            raise ValueError("cluster nodes require 'zoom'")
        if self.kind == "leaf":
            missing = [
                name
                for name in ("index", "point", "width", "height", "anchor")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(f"leaf nodes require {', '.join(missing)}")
            if self.children:
                raise ValueError("leaf nodes cannot have children")
        return self


class TreePayload(BaseModel):
    min_zoom: int = Field(..., alias="minZoom")
    root: int
    nodes: List[TreeNodePayload]

    model_config = {"populate_by_name": True}


class GridEntryPayload(BaseModel):
    id: int
    x: float
    y: float


class GridPayload(BaseModel):
    cell_size: float = Field(..., gt=0, alias="cellSize")
    entries: List[GridEntryPayload] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class RecalculateResponse(BaseModel):
    """Completed computation (``status == "ok"``) or a decode failure report."""

    request_id: int = Field(..., alias="requestId")
    status: Literal["ok", "error"]
    tree: Optional[TreePayload] = None
    grid_clusters: Dict[int, GridPayload] = Field(default_factory=dict, alias="gridClusters")
    grid_unclustered: Dict[int, GridPayload] = Field(default_factory=dict, alias="gridUnclustered")
    diagnostics: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_status(self) -> "RecalculateResponse":
        if self.status == "ok" and self.tree is None:
            raise ValueError("successful responses must carry a tree")
        return self
