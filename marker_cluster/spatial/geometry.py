"""Geographic primitives shared by the grid, the tree and the wire schemas."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

ProjectedPoint = Tuple[float, float]


@dataclass(frozen=True)
class LatLng:
    """Geographic coordinate in decimal degrees."""

    latitude: float
    longitude: float


@dataclass
class LatLngBounds:
    """Axis-aligned geographic box, empty until the first point is added."""

    south: Optional[float] = None
    west: Optional[float] = None
    north: Optional[float] = None
    east: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        return self.south is not None

    @property
    def south_west(self) -> Optional[LatLng]:
        if not self.is_valid:
            return None
        return LatLng(self.south, self.west)

    @property
    def north_east(self) -> Optional[LatLng]:
        if not self.is_valid:
            return None
        return LatLng(self.north, self.east)

    def extend(self, point: LatLng) -> "LatLngBounds":
        """Grow the box to include ``point``."""

        if not self.is_valid:
            self.south = self.north = point.latitude
            self.west = self.east = point.longitude
            return self

        self.south = min(self.south, point.latitude)
        self.north = max(self.north, point.latitude)
        self.west = min(self.west, point.longitude)
        self.east = max(self.east, point.longitude)
        return self

    def extend_bounds(self, other: "LatLngBounds") -> "LatLngBounds":
        """Grow the box to include every corner of ``other``."""

        if other.is_valid:
            self.extend(other.south_west)
            self.extend(other.north_east)
        return self

    def contains(self, point: LatLng) -> bool:
        if not self.is_valid:
            return False
        return (
            self.south <= point.latitude <= self.north
            and self.west <= point.longitude <= self.east
        )

    def copy(self) -> "LatLngBounds":
        return LatLngBounds(self.south, self.west, self.north, self.east)


__all__ = ["LatLng", "LatLngBounds", "ProjectedPoint"]
