"""
Map projection used to place markers on a zoom-dependent pixel plane.

The clustering engine treats projection as an injected pure function:
any object implementing :class:`Projection` can be supplied. It must be
deterministic (same input, same output) and picklable, because it is
shipped to the background worker process.

The default is spherical Web Mercator (EPSG:3857) scaled so that the whole
world spans ``tile_size * 2**zoom`` pixels, matching slippy-map tiling.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

from cachetools import LRUCache

from .geometry import LatLng, LatLngBounds, ProjectedPoint


# -----------------------------
# Constants
# -----------------------------

EARTH_RADIUS_M = 6378137.0
MAX_LATITUDE = 85.0511287798  # Web Mercator clipping latitude
DEFAULT_TILE_SIZE = 256
DEFAULT_CACHE_SIZE = 65536


class Projection(Protocol):
    """Pure, deterministic mapping between geographic and planar coordinates."""

    def project(self, point: LatLng, zoom: float) -> ProjectedPoint: ...

    def unproject(self, xy: ProjectedPoint, zoom: float) -> LatLng: ...


@dataclass(frozen=True)
class WebMercatorProjection:
    """EPSG:4326 -> EPSG:3857 -> pixel space at a zoom level."""

    tile_size: int = DEFAULT_TILE_SIZE

    def _scale(self, zoom: float) -> float:
        return self.tile_size * math.pow(2.0, zoom)

    def project(self, point: LatLng, zoom: float) -> ProjectedPoint:
        lat = max(min(point.latitude, MAX_LATITUDE), -MAX_LATITUDE)
        sin_lat = math.sin(math.radians(lat))

        mx = EARTH_RADIUS_M * math.radians(point.longitude)
        my = EARTH_RADIUS_M * math.log((1.0 + sin_lat) / (1.0 - sin_lat)) / 2.0

        k = 0.5 / (math.pi * EARTH_RADIUS_M)
        scale = self._scale(zoom)
        return (scale * (k * mx + 0.5), scale * (-k * my + 0.5))

    def unproject(self, xy: ProjectedPoint, zoom: float) -> LatLng:
        k = 0.5 / (math.pi * EARTH_RADIUS_M)
        scale = self._scale(zoom)

        mx = (xy[0] / scale - 0.5) / k
        my = (xy[1] / scale - 0.5) / -k

        lng = math.degrees(mx / EARTH_RADIUS_M)
        lat = math.degrees(2.0 * math.atan(math.exp(my / EARTH_RADIUS_M)) - math.pi / 2.0)
        return LatLng(lat, lng)


class ProjectionContext:
    """
    Per-request projection state.

    Wraps an injected :class:`Projection` with the display zoom of the request
    (used whenever a caller does not pass an explicit zoom) and an LRU cache of
    projected points. One context is created per recomputation and never
    shared between requests.
    """

    def __init__(
        self,
        projection: Optional[Projection] = None,
        zoom: float = 0.0,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        self.projection = projection if projection is not None else WebMercatorProjection()
        self.zoom = zoom
        self._cache: LRUCache = LRUCache(maxsize=cache_size)
        self._hits = 0
        self._misses = 0

    def project(self, point: LatLng, zoom: Optional[float] = None) -> ProjectedPoint:
        """Project ``point`` at ``zoom`` (defaults to the display zoom)."""

        z = self.zoom if zoom is None else float(zoom)
        key = (point.latitude, point.longitude, z)
        cached = self._cache.get(key)
        if cached is not None:
            self._hits += 1
            return cached

        self._misses += 1
        xy = self.projection.project(point, z)
        self._cache[key] = xy
        return xy

    def unproject(self, xy: ProjectedPoint, zoom: Optional[float] = None) -> LatLng:
        z = self.zoom if zoom is None else float(zoom)
        return self.projection.unproject(xy, z)

    def bounds_centroid(self, bounds: LatLngBounds) -> Optional[LatLng]:
        """
        Midpoint of the projected south-west and north-east corners.

        Computed in pixel space at the display zoom and unprojected back,
        so it is not the arithmetic mean of the corner latitudes.
        """
        if not bounds.is_valid:
            return None

        sw = self.project(bounds.south_west)
        ne = self.project(bounds.north_east)
        return self.unproject(((sw[0] + ne[0]) / 2.0, (sw[1] + ne[1]) / 2.0))

    def stats(self) -> Dict[str, Any]:
        """Get projection cache statistics."""
        return {
            "size": len(self._cache),
            "maxsize": self._cache.maxsize,
            "hits": self._hits,
            "misses": self._misses,
        }


def distance(a: ProjectedPoint, b: ProjectedPoint) -> float:
    """Euclidean distance between two projected points."""
    return math.hypot(a[0] - b[0], a[1] - b[1])


__all__ = [
    "DEFAULT_CACHE_SIZE",
    "DEFAULT_TILE_SIZE",
    "EARTH_RADIUS_M",
    "MAX_LATITUDE",
    "Projection",
    "ProjectionContext",
    "WebMercatorProjection",
    "distance",
]
