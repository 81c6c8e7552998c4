"""Wire schemas for clustering requests and responses."""

from .models import (
    BoundsPayload,
    GeoPoint,
    GridEntryPayload,
    GridPayload,
    MarkerAnchor,
    MarkerPayload,
    RecalculateRequest,
    RecalculateResponse,
    TreeNodePayload,
    TreePayload,
)

__all__ = [
    "BoundsPayload",
    "GeoPoint",
    "GridEntryPayload",
    "GridPayload",
    "MarkerAnchor",
    "MarkerPayload",
    "RecalculateRequest",
    "RecalculateResponse",
    "TreeNodePayload",
    "TreePayload",
]
