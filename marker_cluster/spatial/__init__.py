"""
marker_cluster.spatial: geographic primitives, projection and the proximity grid.

The grid answers "nearest object within r of p" in O(1) amortised time and is
the index behind every per-zoom clustering step.
"""

from .distance_grid import DistanceGrid
from .geometry import LatLng, LatLngBounds, ProjectedPoint
from .projection import (
    Projection,
    ProjectionContext,
    WebMercatorProjection,
    distance,
)

__all__ = [
    "DistanceGrid",
    "LatLng",
    "LatLngBounds",
    "ProjectedPoint",
    "Projection",
    "ProjectionContext",
    "WebMercatorProjection",
    "distance",
]
