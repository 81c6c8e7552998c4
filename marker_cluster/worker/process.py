"""Entry point of the background clustering process."""

from __future__ import annotations

import logging
import os
from typing import Optional

from ..exceptions import PayloadFormatError
from ..schemas.models import RecalculateRequest
from ..spatial.projection import DEFAULT_CACHE_SIZE, Projection
from ..tools.logging import setup_worker_logging
from ..tree.builder import build_cluster_tree
from .protocol import READY, RESULT, encode_error, encode_result

logger = logging.getLogger(__name__)


def handle_request(
    request_id: int,
    payload: str | bytes,
    projection: Optional[Projection] = None,
    cache_size: int = DEFAULT_CACHE_SIZE,
) -> str:
    """
    Decode one request, build its tree and return the response JSON.

    A payload that fails validation, or whose build raises, yields an error
    response; no partial tree is returned.
    """
    try:
        request = RecalculateRequest.from_json(payload)
    except PayloadFormatError as exc:
        logger.warning(f"Rejecting request {request_id}: {exc}")
        return encode_error(request_id, str(exc))

    try:
        result = build_cluster_tree(request, projection, cache_size=cache_size)
        response = encode_result(result, request_id)
    except Exception as exc:
        # The worker must outlive a failed build
        logger.exception(f"Build failed for request {request_id}")
        return encode_error(request_id, f"Build failed: {type(exc).__name__}: {exc}")

    logger.info(
        f"Request {request_id}: {result.diagnostics.num_markers} markers -> "
        f"{result.diagnostics.num_clusters} clusters in {result.diagnostics.elapsed_ms:.1f} ms"
    )
    return response


def worker_main(
    conn,
    projection: Optional[Projection] = None,
    cache_size: int = DEFAULT_CACHE_SIZE,
    log_level: Optional[str] = None,
) -> None:
    """
    Run the worker loop on ``conn`` until the caller hangs up.

    Requests are handled one at a time in arrival order.
    """
    if log_level:
        setup_worker_logging(log_level)

    conn.send((READY, os.getpid()))
    logger.debug(f"Cluster worker {os.getpid()} ready")

    while True:
        try:
            request_id, payload = conn.recv()
        except EOFError:
            break
        conn.send((RESULT, request_id, handle_request(request_id, payload, projection, cache_size)))

    conn.close()


__all__ = ["handle_request", "worker_main"]
