"""
Cluster tree model.

The tree is an arena: every node lives in ``ClusterTree.nodes`` and is
addressed by its integer id (its position in that list). A cluster owns the
ids in its ``children`` list; ``parent`` is a plain id back-reference. This
keeps the structure free of object cycles and makes it trivial to serialise
across a process boundary (see :meth:`ClusterTree.to_payload`).

Invariants maintained by the mutating methods:
- a node has at most one parent, and a child id appears in exactly one
  ``children`` list;
- the root is a cluster at ``min_zoom - 1`` and has no parent;
- a cluster's ``bounds`` covers its children and ``centroid`` is derived from
  ``bounds`` whenever either changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from ..spatial.geometry import LatLng, LatLngBounds
from ..spatial.projection import ProjectionContext


@dataclass(frozen=True)
class MarkerData:
    """Opaque display metadata carried through clustering unchanged."""

    width: float
    height: float
    anchor_left: float
    anchor_top: float


@dataclass
class LeafNode:
    """A single input marker."""

    id: int
    point: LatLng
    data: MarkerData
    index: int
    """Position of the marker in the request's marker list."""

    parent: Optional[int] = None

    is_cluster = False


@dataclass
class ClusterNode:
    """A group of markers merged at ``zoom``."""

    id: int
    zoom: int
    children: List[int] = field(default_factory=list)
    bounds: LatLngBounds = field(default_factory=LatLngBounds)
    centroid: Optional[LatLng] = None
    parent: Optional[int] = None

    is_cluster = True


Node = Union[LeafNode, ClusterNode]


class ClusterTree:
    """Arena-backed cluster hierarchy with a single root."""

    def __init__(self, min_zoom: int, context: Optional[ProjectionContext] = None):
        """
        Create a tree holding only its root.

        Args:
            min_zoom: Lowest clustering zoom; the root sits one level above it
            context: Projection context used to derive cluster centroids.
                Trees rebuilt from a payload have no context and keep the
                centroids they were serialised with.
        """
        self.min_zoom = min_zoom
        self.context = context
        self.nodes: List[Node] = []
        self.root = self.add_cluster(min_zoom - 1)

    # -----------------------------
    # Node access
    # -----------------------------

    def __getitem__(self, node_id: int) -> Node:
        return self.nodes[node_id]

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def root_node(self) -> ClusterNode:
        return self.nodes[self.root]

    @property
    def leaves(self) -> List[LeafNode]:
        return [n for n in self.nodes if not n.is_cluster]

    @property
    def clusters(self) -> List[ClusterNode]:
        return [n for n in self.nodes if n.is_cluster]

    def point_of(self, node_id: int) -> Optional[LatLng]:
        """Leaf position or cluster centroid."""
        node = self.nodes[node_id]
        return node.centroid if node.is_cluster else node.point

    # -----------------------------
    # Construction
    # -----------------------------

    def add_leaf(self, point: LatLng, data: MarkerData, index: int) -> int:
        leaf = LeafNode(id=len(self.nodes), point=point, data=data, index=index)
        self.nodes.append(leaf)
        return leaf.id

    def add_cluster(self, zoom: int) -> int:
        cluster = ClusterNode(id=len(self.nodes), zoom=zoom)
        self.nodes.append(cluster)
        return cluster.id

    def add_child(self, parent_id: int, child_id: int) -> None:
        """Attach ``child_id`` under ``parent_id`` and grow the parent's bounds."""

        parent = self.nodes[parent_id]
        child = self.nodes[child_id]
        if not parent.is_cluster:
            raise ValueError(f"Node {parent_id} is a leaf and cannot own children")
        if child.parent is not None:
            raise ValueError(
                f"Node {child_id} already belongs to cluster {child.parent}; detach it first"
            )
        if child_id == parent_id:
            raise ValueError("A cluster cannot contain itself")

        parent.children.append(child_id)
        child.parent = parent_id

        if child.is_cluster:
            parent.bounds.extend_bounds(child.bounds)
        else:
            parent.bounds.extend(child.point)
        self._refresh_centroid(parent)

    def remove_child(self, parent_id: int, child_id: int) -> bool:
        """Detach ``child_id``; return False if it was not a child of ``parent_id``."""

        parent = self.nodes[parent_id]
        if child_id not in parent.children:
            return False

        parent.children.remove(child_id)
        self.nodes[child_id].parent = None
        self._rebuild_bounds(parent)
        return True

    def _refresh_centroid(self, cluster: ClusterNode) -> None:
        if self.context is not None:
            cluster.centroid = self.context.bounds_centroid(cluster.bounds)

    def _rebuild_bounds(self, cluster: ClusterNode) -> None:
        bounds = LatLngBounds()
        for child_id in cluster.children:
            child = self.nodes[child_id]
            if child.is_cluster:
                bounds.extend_bounds(child.bounds)
            else:
                bounds.extend(child.point)
        cluster.bounds = bounds
        self._refresh_centroid(cluster)

    def recalculate_bounds(self, node_id: Optional[int] = None) -> None:
        """Recompute bounds and centroids for every cluster below ``node_id``, bottom-up."""

        start = self.root if node_id is None else node_id
        for node in reversed(list(self.walk(start))):
            if node.is_cluster:
                self._rebuild_bounds(node)

    # -----------------------------
    # Traversal
    # -----------------------------

    def walk(self, node_id: Optional[int] = None) -> Iterator[Node]:
        """Pre-order traversal, children in insertion order."""

        stack = [self.root if node_id is None else node_id]
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            if node.is_cluster:
                stack.extend(reversed(node.children))

    def markers(self, node_id: Optional[int] = None) -> List[LeafNode]:
        """Every leaf below ``node_id`` (default: the whole tree) in child order."""
        return [n for n in self.walk(node_id) if not n.is_cluster]

    def ancestors(self, node_id: int) -> Iterator[ClusterNode]:
        """Yield each ancestor of ``node_id`` up to and including the root."""

        seen = {node_id}
        parent = self.nodes[node_id].parent
        while parent is not None:
            if parent in seen:
                raise RuntimeError(f"Cycle detected above node {node_id}")
            seen.add(parent)
            node = self.nodes[parent]
            yield node
            parent = node.parent

    def path_to_root(self, node_id: int) -> List[int]:
        """Ids from ``node_id`` (inclusive) up to the root."""
        return [node_id] + [n.id for n in self.ancestors(node_id)]

    def visible_at(
        self,
        zoom: int,
        disable_clustering_at_zoom: Optional[int] = None,
        visit: Optional[Callable[[Node], None]] = None,
    ) -> List[Node]:
        """
        Nodes a map should draw at ``zoom``.

        Clusters created at ``zoom`` are returned as a unit; leaves that are not
        inside such a cluster are returned individually. Above
        ``disable_clustering_at_zoom`` every leaf is returned on its own.
        """
        visible: List[Node] = []
        stack = [self.root]
        while stack:
            cluster = self.nodes[stack.pop()]
            clustering_on = disable_clustering_at_zoom is None or zoom <= disable_clustering_at_zoom
            if cluster.zoom == zoom and clustering_on:
                visible.append(cluster)
                continue
            for child_id in reversed(cluster.children):
                child = self.nodes[child_id]
                if child.is_cluster:
                    stack.append(child_id)
                else:
                    visible.append(child)

        if visit is not None:
            for node in visible:
                visit(node)
        return visible

    def shape(self, node_id: Optional[int] = None) -> Tuple:
        """
        Identity-free nested description of the subtree.

        Leaves are represented by their input index and clusters by
        ``(zoom, (child shapes...))``, so two trees built from the same request
        compare equal even though their node ids may differ.
        """
        node = self.nodes[self.root if node_id is None else node_id]
        if not node.is_cluster:
            return node.index
        return (node.zoom, tuple(self.shape(c) for c in node.children))

    # -----------------------------
    # Serialisation
    # -----------------------------

    def to_payload(self) -> Dict[str, Any]:
        """Plain-dict form of the tree, safe to JSON-encode."""

        nodes: List[Dict[str, Any]] = []
        for node in self.nodes:
            if node.is_cluster:
                nodes.append(
                    {
                        "id": node.id,
                        "kind": "cluster",
                        "zoom": node.zoom,
                        "parent": node.parent,
                        "children": list(node.children),
                        "bounds": _bounds_to_dict(node.bounds),
                        "centroid": _point_to_dict(node.centroid),
                    }
                )
            else:
                nodes.append(
                    {
                        "id": node.id,
                        "kind": "leaf",
                        "index": node.index,
                        "parent": node.parent,
                        "point": _point_to_dict(node.point),
                        "width": node.data.width,
                        "height": node.data.height,
                        "anchor": {"left": node.data.anchor_left, "top": node.data.anchor_top},
                    }
                )
        return {"minZoom": self.min_zoom, "root": self.root, "nodes": nodes}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ClusterTree":
        """Rebuild a tree produced by :meth:`to_payload`."""

        tree = cls.__new__(cls)
        tree.min_zoom = payload["minZoom"]
        tree.context = None
        tree.root = payload["root"]
        tree.nodes = []

        for position, raw in enumerate(payload["nodes"]):
            if raw["id"] != position:
                raise ValueError(f"Node ids must be dense and ordered; got {raw['id']} at {position}")
            if raw["kind"] == "cluster":
                tree.nodes.append(
                    ClusterNode(
                        id=raw["id"],
                        zoom=raw["zoom"],
                        children=list(raw["children"]),
                        bounds=_bounds_from_dict(raw.get("bounds")),
                        centroid=_point_from_dict(raw.get("centroid")),
                        parent=raw.get("parent"),
                    )
                )
            else:
                anchor = raw["anchor"]
                tree.nodes.append(
                    LeafNode(
                        id=raw["id"],
                        point=_point_from_dict(raw["point"]),
                        data=MarkerData(
                            width=raw["width"],
                            height=raw["height"],
                            anchor_left=anchor["left"],
                            anchor_top=anchor["top"],
                        ),
                        index=raw["index"],
                        parent=raw.get("parent"),
                    )
                )
        return tree


def _point_to_dict(point: Optional[LatLng]) -> Optional[Dict[str, float]]:
    if point is None:
        return None
    return {"latitude": point.latitude, "longitude": point.longitude}


def _point_from_dict(data: Optional[Dict[str, float]]) -> Optional[LatLng]:
    if data is None:
        return None
    return LatLng(data["latitude"], data["longitude"])


def _bounds_to_dict(bounds: LatLngBounds) -> Optional[Dict[str, float]]:
    if not bounds.is_valid:
        return None
    return {"south": bounds.south, "west": bounds.west, "north": bounds.north, "east": bounds.east}


def _bounds_from_dict(data: Optional[Dict[str, float]]) -> LatLngBounds:
    if data is None:
        return LatLngBounds()
    return LatLngBounds(data["south"], data["west"], data["north"], data["east"])


__all__ = ["ClusterNode", "ClusterTree", "LeafNode", "MarkerData", "Node"]
