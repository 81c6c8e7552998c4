"""
Greedy, grid-accelerated construction of the multi-zoom cluster tree.

For every zoom level between ``max_zoom`` and ``min_zoom`` the builder keeps
two :class:`~marker_cluster.spatial.DistanceGrid` instances: one holding the
clusters formed at that zoom and one holding markers that are still alone at
that zoom. Markers are inserted one at a time, in request order, walking from
the most detailed zoom towards the coarsest:

1. join a nearby cluster at this zoom if there is one, or
2. merge with a nearby lone marker into a new cluster (creating one
   single-child cluster per zoom level between the merge zoom and the lone
   marker's former parent), or
3. stay alone at this zoom and try the next coarser level.

A marker that never merges hangs directly off the root, which sits at
``min_zoom - 1``. The result depends on marker order; it is an approximation,
not an optimal clustering.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from ..schemas.models import RecalculateRequest
from ..spatial.distance_grid import DistanceGrid
from ..spatial.geometry import LatLng
from ..spatial.projection import DEFAULT_CACHE_SIZE, Projection, ProjectionContext
from .nodes import ClusterTree, MarkerData

logger = logging.getLogger(__name__)


@dataclass
class BuildDiagnostics:
    """Summary of one tree build, for logging and inspection."""

    num_markers: int
    """Markers in the request."""

    num_clusters: int
    """Clusters created, excluding the root."""

    root_children: int
    """Direct children of the root."""

    zoom_levels: int
    """Number of per-zoom grid pairs used (0 for inverted zoom bounds)."""

    elapsed_ms: float = 0.0
    """Wall-clock build time in milliseconds."""

    projection_cache: Dict[str, Any] = field(default_factory=dict)
    """Projection cache statistics at the end of the build."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClusterResult:
    """Completed computation: the tree plus the per-zoom grids that built it."""

    tree: ClusterTree
    grid_clusters: Dict[int, DistanceGrid[int]]
    grid_unclustered: Dict[int, DistanceGrid[int]]
    diagnostics: Optional[BuildDiagnostics] = None

    @property
    def root(self):
        return self.tree.root_node


class BuildContext:
    """
    All mutable state of one recomputation.

    Created per request and handed to the caller with the result; nothing
    here is shared between requests.
    """

    def __init__(
        self,
        request: RecalculateRequest,
        projection: Optional[Projection] = None,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        self.request = request
        self.projection = ProjectionContext(projection, zoom=request.zoom, cache_size=cache_size)
        self.grid_clusters: Dict[int, DistanceGrid[int]] = {}
        self.grid_unclustered: Dict[int, DistanceGrid[int]] = {}
        self.tree: Optional[ClusterTree] = None

    def initialize_clusters(self) -> None:
        """Create one empty grid pair per zoom level and the root cluster."""
        radius = self.request.max_cluster_radius
        for zoom in range(self.request.max_zoom, self.request.min_zoom - 1, -1):
            self.grid_clusters[zoom] = DistanceGrid(radius)
            self.grid_unclustered[zoom] = DistanceGrid(radius)

        self.tree = ClusterTree(self.request.min_zoom, context=self.projection)

    def add_markers(self) -> None:
        """Insert every marker in request order, then fix up bounds once."""
        for index, marker in enumerate(self.request.markers):
            leaf_id = self.tree.add_leaf(
                LatLng(marker.point.latitude, marker.point.longitude),
                MarkerData(
                    width=marker.width,
                    height=marker.height,
                    anchor_left=marker.anchor.left,
                    anchor_top=marker.anchor.top,
                ),
                index,
            )
            self.add_marker(leaf_id)

        self.tree.recalculate_bounds()

    def add_marker(self, leaf_id: int) -> None:
        tree = self.tree
        point = tree[leaf_id].point

        for zoom in range(self.request.max_zoom, self.request.min_zoom - 1, -1):
            marker_xy = self.projection.project(point, zoom)

            # Try a cluster close by
            cluster_id = self.grid_clusters[zoom].nearest(marker_xy)
            if cluster_id is not None:
                tree.add_child(cluster_id, leaf_id)
                return

            closest_id = self.grid_unclustered[zoom].nearest(marker_xy)
            if closest_id is not None:
                self._merge(closest_id, leaf_id, zoom)
                return

            self.grid_unclustered[zoom].insert(leaf_id, marker_xy)

        # Never merged anywhere: hang off the root
        tree.add_child(tree.root, leaf_id)

    def _merge(self, closest_id: int, leaf_id: int, zoom: int) -> None:
        """Pair ``leaf_id`` with the lone marker ``closest_id`` at ``zoom``."""
        tree = self.tree
        closest = tree[closest_id]
        parent_id = closest.parent
        tree.remove_child(parent_id, closest_id)

        new_cluster = tree.add_cluster(zoom)
        tree.add_child(new_cluster, closest_id)
        tree.add_child(new_cluster, leaf_id)
        self.grid_clusters[zoom].insert(
            new_cluster, self.projection.project(tree.point_of(new_cluster), zoom)
        )

        # Fill every zoom between the new cluster and the old parent
        last_parent = new_cluster
        for z in range(zoom - 1, tree[parent_id].zoom, -1):
            intermediate = tree.add_cluster(z)
            tree.add_child(intermediate, last_parent)
            last_parent = intermediate
            self.grid_clusters[z].insert(last_parent, self.projection.project(closest.point, z))

        tree.add_child(parent_id, last_parent)
        self._remove_from_unclustered(closest_id, zoom)

    def _remove_from_unclustered(self, leaf_id: int, zoom: int) -> None:
        """Drop ``leaf_id`` from the unclustered grids at ``zoom`` and coarser.

        The marker is registered on a contiguous run of zooms, so the first
        grid that does not hold it ends the run.
        """
        for z in range(zoom, self.request.min_zoom - 1, -1):
            if not self.grid_unclustered[z].remove(leaf_id):
                break

    def result(self, elapsed_ms: float = 0.0) -> ClusterResult:
        tree = self.tree
        diagnostics = BuildDiagnostics(
            num_markers=len(self.request.markers),
            num_clusters=len(tree.clusters) - 1,
            root_children=len(tree.root_node.children),
            zoom_levels=self.request.zoom_levels,
            elapsed_ms=elapsed_ms,
            projection_cache=self.projection.stats(),
        )
        return ClusterResult(
            tree=tree,
            grid_clusters=self.grid_clusters,
            grid_unclustered=self.grid_unclustered,
            diagnostics=diagnostics,
        )


def build_cluster_tree(
    request: RecalculateRequest,
    projection: Optional[Projection] = None,
    *,
    cache_size: int = DEFAULT_CACHE_SIZE,
) -> ClusterResult:
    """
    Build a fresh cluster tree for ``request``.

    Args:
        request: Zoom bounds, radius and markers
        projection: Injected projection (defaults to Web Mercator)
        cache_size: Capacity of the per-request projection cache

    Returns:
        ClusterResult with the tree, both grid maps and diagnostics

    Example:
        >>> request = RecalculateRequest.from_mapping({
        ...     "minZoom": 0, "maxZoom": 18, "zoom": 10, "maxClusterRadius": 80,
        ...     "markers": [],
        ... })
        >>> build_cluster_tree(request).tree.root_node.zoom
        -1
    """
    started = time.perf_counter()

    context = BuildContext(request, projection, cache_size=cache_size)
    context.initialize_clusters()
    context.add_markers()

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    result = context.result(elapsed_ms)

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(f"Cluster tree built: {result.diagnostics.to_dict()}")

    return result


__all__ = ["BuildContext", "BuildDiagnostics", "ClusterResult", "build_cluster_tree"]
