"""
Pytest configuration and shared fixtures for marker-cluster tests.

This file provides:
- Marker and request builders
- Sample marker sets (pairs, city-scale random sets)
- Tree invariant helpers
"""

from typing import Any, Dict, List

import numpy as np
import pytest

from marker_cluster.schemas.models import RecalculateRequest
from marker_cluster.spatial.projection import WebMercatorProjection
from marker_cluster.tree.nodes import ClusterTree


# ==============================================================================
# Builders
# ==============================================================================

def make_marker(
    lat: float,
    lng: float,
    width: float = 30.0,
    height: float = 40.0,
    left: float = 15.0,
    top: float = 40.0,
) -> Dict[str, Any]:
    """Marker in wire form."""
    return {
        "point": {"latitude": lat, "longitude": lng},
        "width": width,
        "height": height,
        "anchor": {"left": left, "top": top},
    }


def make_request(
    markers: List[Dict[str, Any]],
    min_zoom: int = 0,
    max_zoom: int = 18,
    radius: int = 80,
    zoom: float = 10.0,
) -> RecalculateRequest:
    return RecalculateRequest.from_mapping(
        {
            "minZoom": min_zoom,
            "maxZoom": max_zoom,
            "zoom": zoom,
            "maxClusterRadius": radius,
            "markers": markers,
        }
    )


# ==============================================================================
# Sample Markers
# ==============================================================================

@pytest.fixture
def projection() -> WebMercatorProjection:
    return WebMercatorProjection()


@pytest.fixture
def close_pair() -> List[Dict[str, Any]]:
    """Two markers ~11 m apart: within 80 px at every zoom up to 18."""
    return [make_marker(0.0, 0.0), make_marker(0.0, 0.0001)]


@pytest.fixture
def zoom10_pair() -> List[Dict[str, Any]]:
    """Two markers 0.1 degrees apart: first within 80 px at zoom 10."""
    return [make_marker(0.0, 0.0), make_marker(0.0, 0.1)]


@pytest.fixture
def tokyo_markers() -> List[Dict[str, Any]]:
    """300 markers scattered around central Tokyo (deterministic)."""
    rng = np.random.default_rng(42)
    lats = 35.6812 + rng.normal(0.0, 0.03, size=300)
    lngs = 139.7671 + rng.normal(0.0, 0.04, size=300)
    return [make_marker(float(lat), float(lng)) for lat, lng in zip(lats, lngs)]


# ==============================================================================
# Utilities
# ==============================================================================

def assert_tree_connected(tree: ClusterTree) -> None:
    """Every non-root node has exactly one parent and reaches the root."""
    owners: Dict[int, int] = {}
    for node in tree.clusters:
        for child_id in node.children:
            assert child_id not in owners, f"node {child_id} owned twice"
            owners[child_id] = node.id
            assert tree[child_id].parent == node.id

    for node in tree.nodes:
        if node.id == tree.root:
            assert node.parent is None
            continue
        assert owners.get(node.id) == node.parent
        chain = list(tree.ancestors(node.id))
        assert chain[-1].id == tree.root
