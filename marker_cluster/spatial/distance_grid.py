"""
Bucketed proximity index for fixed-radius nearest-neighbour lookups.

Objects are hashed into square cells of side ``cell_size``. A query scans the
query point's cell and its eight neighbours, so any object within
``cell_size`` of the query point is guaranteed to be seen. Insert, remove and
query are O(1) amortised for evenly spread data.

Tie-breaking: when several objects sit at exactly the minimal distance, the
one inserted first wins. Every insert takes the next value of a per-grid
sequence counter and ``nearest`` compares ``(distance, sequence)`` pairs, so
the result never depends on cell scan order or dictionary iteration order.
"""

from __future__ import annotations

import math
from typing import Dict, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar

from .geometry import ProjectedPoint

T = TypeVar("T", bound=Hashable)

CellKey = Tuple[float, float]


class DistanceGrid(Generic[T]):
    """Spatial hash of objects keyed by their projected position."""

    def __init__(self, cell_size: float):
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        self.cell_size = cell_size
        self._sq_cell_size = float(cell_size) * float(cell_size)
        self._cells: Dict[CellKey, List[T]] = {}
        self._entries: Dict[T, Tuple[ProjectedPoint, CellKey, int]] = {}
        self._sequence = 0

    def _coord(self, value: float) -> float:
        scaled = value / self.cell_size
        if not math.isfinite(scaled):
            # NaN/inf cannot be floored; keep the raw value as its own bucket.
            return value
        return math.floor(scaled)

    def _cell_key(self, point: ProjectedPoint) -> CellKey:
        return (self._coord(point[0]), self._coord(point[1]))

    def insert(self, obj: T, point: ProjectedPoint) -> None:
        """Place ``obj`` in the cell containing ``point``.

        Inserting an object that is already present moves it and gives it a
        fresh sequence number.
        """
        if obj in self._entries:
            self.remove(obj)

        key = self._cell_key(point)
        self._cells.setdefault(key, []).append(obj)
        self._entries[obj] = ((float(point[0]), float(point[1])), key, self._sequence)
        self._sequence += 1

    def update(self, obj: T, point: ProjectedPoint) -> None:
        """Move ``obj`` to ``point``."""
        self.remove(obj)
        self.insert(obj, point)

    def remove(self, obj: T) -> bool:
        """Remove ``obj``; return False (and change nothing) if it is absent."""
        entry = self._entries.pop(obj, None)
        if entry is None:
            return False

        _, key, _ = entry
        cell = self._cells[key]
        cell.remove(obj)
        if not cell:
            del self._cells[key]
        return True

    def nearest(self, point: ProjectedPoint) -> Optional[T]:
        """
        Return the closest object within ``cell_size`` of ``point``.

        Args:
            point: Query position in the same projected space as the inserts

        Returns:
            The nearest object, or None when nothing lies within ``cell_size``
        """
        cx, cy = self._cell_key(point)
        if not (isinstance(cx, int) and isinstance(cy, int)):
            return None

        best: Optional[T] = None
        best_key: Optional[Tuple[float, int]] = None

        for y in range(cy - 1, cy + 2):
            for x in range(cx - 1, cx + 2):
                cell = self._cells.get((x, y))
                if not cell:
                    continue
                for obj in cell:
                    (ox, oy), _, seq = self._entries[obj]
                    dist_sq = (ox - point[0]) ** 2 + (oy - point[1]) ** 2
                    if dist_sq > self._sq_cell_size:
                        continue
                    candidate = (dist_sq, seq)
                    if best_key is None or candidate < best_key:
                        best, best_key = obj, candidate

        return best

    def point_of(self, obj: T) -> Optional[ProjectedPoint]:
        entry = self._entries.get(obj)
        return entry[0] if entry is not None else None

    def items(self) -> Iterator[Tuple[T, ProjectedPoint]]:
        """Yield ``(object, point)`` pairs in insertion order."""
        for obj, (point, _, _) in sorted(self._entries.items(), key=lambda kv: kv[1][2]):
            yield obj, point

    def __iter__(self) -> Iterator[T]:
        for obj, _ in self.items():
            yield obj

    def __contains__(self, obj: object) -> bool:
        return obj in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"DistanceGrid(cell_size={self.cell_size}, objects={len(self)}, cells={len(self._cells)})"


__all__ = ["DistanceGrid"]
