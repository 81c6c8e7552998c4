"""
Messages exchanged between :class:`ClusterWorker` and its background process.

Nothing crosses the process boundary except plain tuples of ints and strings:

* worker -> caller ``(READY, pid)`` once, when the worker can accept work;
* caller -> worker ``(request_id, request_json)`` per recalculation;
* worker -> caller ``(RESULT, request_id, response_json)`` per request.

The response JSON is a :class:`RecalculateResponse`; the caller decodes it
into a brand new :class:`ClusterResult`, so no live objects are shared.
"""

from __future__ import annotations

from typing import Dict

from pydantic import ValidationError

from ..exceptions import PayloadFormatError
from ..schemas.models import (
    GridEntryPayload,
    GridPayload,
    RecalculateResponse,
    TreePayload,
)
from ..spatial.distance_grid import DistanceGrid
from ..tree.builder import BuildDiagnostics, ClusterResult
from ..tree.nodes import ClusterTree

READY = "ready"
RESULT = "result"


def _grid_to_payload(grid: DistanceGrid[int]) -> GridPayload:
    return GridPayload(
        cell_size=grid.cell_size,
        entries=[GridEntryPayload(id=obj, x=xy[0], y=xy[1]) for obj, xy in grid.items()],
    )


def _grid_from_payload(payload: GridPayload) -> DistanceGrid[int]:
    grid: DistanceGrid[int] = DistanceGrid(payload.cell_size)
    for entry in payload.entries:
        grid.insert(entry.id, (entry.x, entry.y))
    return grid


def _grids_from_payload(grids: Dict[int, GridPayload]) -> Dict[int, DistanceGrid[int]]:
    return {zoom: _grid_from_payload(grid) for zoom, grid in sorted(grids.items(), reverse=True)}


def encode_result(result: ClusterResult, request_id: int) -> str:
    """Serialise a completed computation to response JSON."""

    response = RecalculateResponse(
        request_id=request_id,
        status="ok",
        tree=TreePayload.model_validate(result.tree.to_payload()),
        grid_clusters={z: _grid_to_payload(g) for z, g in result.grid_clusters.items()},
        grid_unclustered={z: _grid_to_payload(g) for z, g in result.grid_unclustered.items()},
        diagnostics=result.diagnostics.to_dict() if result.diagnostics else None,
    )
    return response.model_dump_json(by_alias=True)


def encode_error(request_id: int, message: str) -> str:
    response = RecalculateResponse(request_id=request_id, status="error", error=message)
    return response.model_dump_json(by_alias=True)


def decode_response(text: str | bytes) -> RecalculateResponse:
    try:
        return RecalculateResponse.model_validate_json(text)
    except ValidationError as exc:
        raise PayloadFormatError(f"Invalid recalculate response: {exc}") from exc


def result_from_response(response: RecalculateResponse) -> ClusterResult:
    """Rebuild a caller-owned :class:`ClusterResult` from a successful response."""

    if response.status != "ok":
        raise PayloadFormatError(
            f"Request {response.request_id} failed in worker: {response.error}"
        )

    try:
        tree = ClusterTree.from_payload(response.tree.model_dump(by_alias=True))
    except (KeyError, ValueError) as exc:
        raise PayloadFormatError(f"Malformed tree in response {response.request_id}: {exc}") from exc

    diagnostics = BuildDiagnostics(**response.diagnostics) if response.diagnostics else None
    return ClusterResult(
        tree=tree,
        grid_clusters=_grids_from_payload(response.grid_clusters),
        grid_unclustered=_grids_from_payload(response.grid_unclustered),
        diagnostics=diagnostics,
    )


__all__ = [
    "READY",
    "RESULT",
    "decode_response",
    "encode_error",
    "encode_result",
    "result_from_response",
]
