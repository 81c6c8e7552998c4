"""
marker_cluster: multi-zoom clustering of geographic markers.

Usage:
    from marker_cluster import (
        ClusterOptions,
        ClusterWorker,
        RecalculateRequest,
        build_cluster_tree,
    )

    # In-process build
    result = build_cluster_tree(request)
    visible = result.tree.visible_at(12)

    # Off the event loop, in a background process
    async with ClusterWorker() as worker:
        worker.recalculate(request)
        async for result in worker.results():
            ...
"""

from .exceptions import (
    MarkerClusterError,
    PayloadFormatError,
    WorkerClosedError,
    WorkerStartupError,
)
from .schemas import MarkerPayload, RecalculateRequest, RecalculateResponse
from .spatial import (
    DistanceGrid,
    LatLng,
    LatLngBounds,
    Projection,
    ProjectionContext,
    WebMercatorProjection,
)
from .tools import ClusterOptions, ConfigLoader, setup_logging
from .tree import (
    BuildDiagnostics,
    ClusterNode,
    ClusterResult,
    ClusterTree,
    LeafNode,
    MarkerData,
    build_cluster_tree,
    tree_to_dataframe,
)
from .worker import ClusterWorker

__version__ = "1.0.0"

__all__ = [
    # Errors
    "MarkerClusterError",
    "PayloadFormatError",
    "WorkerClosedError",
    "WorkerStartupError",

    # Wire schemas
    "MarkerPayload",
    "RecalculateRequest",
    "RecalculateResponse",

    # Spatial
    "DistanceGrid",
    "LatLng",
    "LatLngBounds",
    "Projection",
    "ProjectionContext",
    "WebMercatorProjection",

    # Configuration
    "ClusterOptions",
    "ConfigLoader",
    "setup_logging",

    # Tree
    "BuildDiagnostics",
    "ClusterNode",
    "ClusterResult",
    "ClusterTree",
    "LeafNode",
    "MarkerData",
    "build_cluster_tree",
    "tree_to_dataframe",

    # Worker
    "ClusterWorker",
]
