"""
marker_cluster.tree: cluster hierarchy model and the greedy builder.
"""

from .builder import BuildContext, BuildDiagnostics, ClusterResult, build_cluster_tree
from .export import clusters_per_zoom, tree_to_dataframe
from .nodes import ClusterNode, ClusterTree, LeafNode, MarkerData, Node

__all__ = [
    "BuildContext",
    "BuildDiagnostics",
    "ClusterNode",
    "ClusterResult",
    "ClusterTree",
    "LeafNode",
    "MarkerData",
    "Node",
    "build_cluster_tree",
    "clusters_per_zoom",
    "tree_to_dataframe",
]
