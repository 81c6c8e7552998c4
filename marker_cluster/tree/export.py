"""Tabular views of a cluster tree for inspection and debugging."""

from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .nodes import ClusterTree

NODE_COLUMNS = [
    "id",
    "kind",
    "zoom",
    "parent",
    "depth",
    "num_children",
    "num_markers",
    "lat",
    "lng",
    "marker_index",
]


def tree_to_dataframe(tree: ClusterTree) -> pd.DataFrame:
    """
    Flatten ``tree`` into one row per node.

    Clusters report their centroid as ``lat``/``lng`` (NaN for an empty root)
    and leaves their own position. ``zoom`` of a leaf is the zoom of its
    parent plus one, which is the first level at which it is drawn alone.
    """
    if len(tree) == 0:
        return pd.DataFrame(columns=NODE_COLUMNS)

    depth: Dict[int, int] = {tree.root: 0}
    marker_counts: Dict[int, int] = {}
    for node in reversed(list(tree.walk())):
        if node.is_cluster:
            marker_counts[node.id] = sum(marker_counts.get(c, 0) for c in node.children)
        else:
            marker_counts[node.id] = 1

    rows: List[dict] = []
    for node in tree.walk():
        if node.parent is not None:
            depth[node.id] = depth[node.parent] + 1

        point = tree.point_of(node.id)
        if node.is_cluster:
            zoom = node.zoom
            num_children = len(node.children)
            marker_index: Optional[int] = None
        else:
            zoom = tree[node.parent].zoom + 1 if node.parent is not None else None
            num_children = 0
            marker_index = node.index

        rows.append(
            dict(
                id=node.id,
                kind="cluster" if node.is_cluster else "leaf",
                zoom=zoom,
                parent=node.parent,
                depth=depth[node.id],
                num_children=num_children,
                num_markers=marker_counts[node.id],
                lat=point.latitude if point is not None else np.nan,
                lng=point.longitude if point is not None else np.nan,
                marker_index=marker_index,
            )
        )

    return pd.DataFrame(rows, columns=NODE_COLUMNS)


def clusters_per_zoom(tree: ClusterTree) -> pd.Series:
    """Number of clusters created at each zoom level (root excluded)."""
    df = tree_to_dataframe(tree)
    clusters = df[(df["kind"] == "cluster") & (df["id"] != tree.root)]
    return clusters.groupby("zoom").size().rename("clusters")


__all__ = ["NODE_COLUMNS", "clusters_per_zoom", "tree_to_dataframe"]
