"""
Asynchronous channel to a background clustering process.

:class:`ClusterWorker` owns exactly one worker process. The caller awaits
:meth:`ClusterWorker.start` once (the readiness handshake); after that,
:meth:`ClusterWorker.recalculate` is fire-and-forget and completed trees
arrive, in submission order, on the :meth:`ClusterWorker.results` stream.

Example:
    >>> async def main(request):
    ...     async with ClusterWorker() as worker:
    ...         worker.recalculate(request)
    ...         async for result in worker.results():
    ...             return result.tree
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
from typing import Any, AsyncIterator, List, Mapping, Optional, Tuple, Union

from ..exceptions import PayloadFormatError, WorkerClosedError, WorkerStartupError
from ..schemas.models import RecalculateRequest
from ..spatial.projection import DEFAULT_CACHE_SIZE, Projection, WebMercatorProjection
from ..tools.config_loader import ClusterOptions
from ..tools.logging import resolve_level
from ..tree.builder import ClusterResult
from .process import worker_main
from .protocol import READY, RESULT, decode_response, result_from_response

logger = logging.getLogger(__name__)

DEFAULT_START_TIMEOUT_SEC = 30.0
JOIN_TIMEOUT_SEC = 5.0
WORKER_NAME = "Cluster computation"

_END_OF_STREAM = object()


class ClusterWorker:
    """
    Request/response channel to a dedicated clustering process.

    The process is spawned by :meth:`start` (or on entering ``async with``),
    not by the constructor. A started worker must be closed: until
    :meth:`close` runs, a default-executor thread stays blocked reading the
    pipe, and ``asyncio.run`` waits for it on shutdown. Prefer
    ``async with ClusterWorker() as worker:`` so teardown always happens.

    If the process dies on its own, the result stream ends and the worker
    counts as closed; further :meth:`recalculate` calls raise
    :class:`WorkerClosedError`.
    """

    def __init__(
        self,
        projection: Optional[Projection] = None,
        *,
        start_timeout: float = DEFAULT_START_TIMEOUT_SEC,
        cache_size: int = DEFAULT_CACHE_SIZE,
        log_level: Optional[str] = None,
        mp_context: Optional[Any] = None,
    ):
        """
        Configure (but do not spawn) the worker.

        Args:
            projection: Picklable projection shipped to the worker process
            start_timeout: Seconds to wait for the readiness handshake
            cache_size: Projection cache capacity used for each request
            log_level: Logging level configured inside the worker process;
                an unknown level name raises ValueError here rather than in the child
            mp_context: multiprocessing context (defaults to ``spawn``)
        """
        self._projection = projection if projection is not None else WebMercatorProjection()
        self._start_timeout = start_timeout
        self._cache_size = cache_size
        if log_level is not None:
            resolve_level(log_level)
        self._log_level = log_level
        self._mp = mp_context if mp_context is not None else multiprocessing.get_context("spawn")

        self._process = None
        self._conn = None
        self._ready: Optional[asyncio.Future] = None
        self._reader: Optional[asyncio.Task] = None
        self._pending: List[Tuple[int, str]] = []
        self._results: asyncio.Queue = asyncio.Queue()
        self._next_request_id = 0
        self._stream_closed = False
        self._closed = False

    @classmethod
    def from_options(cls, options: ClusterOptions, projection: Optional[Projection] = None) -> "ClusterWorker":
        return cls(
            projection,
            start_timeout=options.start_timeout_sec,
            cache_size=options.projection_cache_size,
            log_level=options.log_level,
        )

    # -----------------------------
    # Lifecycle
    # -----------------------------

    @property
    def is_ready(self) -> bool:
        return (
            not self._closed
            and self._ready is not None
            and self._ready.done()
            and not self._ready.cancelled()
            and self._ready.exception() is None
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    async def start(self) -> "ClusterWorker":
        """
        Spawn the worker process and wait until it reports ready.

        Raises:
            WorkerStartupError: If the process cannot be spawned, exits early,
                or does not report ready within ``start_timeout`` seconds
        """
        if self._closed:
            raise WorkerClosedError("Cannot start a closed ClusterWorker")
        if self._process is not None:
            raise WorkerStartupError("ClusterWorker has already been started")

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()

        parent_conn, child_conn = self._mp.Pipe(duplex=True)
        try:
            process = self._mp.Process(
                target=worker_main,
                args=(child_conn, self._projection, self._cache_size, self._log_level),
                name=WORKER_NAME,
                daemon=True,
            )
            process.start()
        except Exception as exc:
            parent_conn.close()
            child_conn.close()
            self._closed = True
            self._finish_stream()
            raise WorkerStartupError(f"Failed to spawn cluster worker: {exc}") from exc
        finally:
            # The child holds its own copy; closing ours lets EOF propagate.
            if not child_conn.closed:
                child_conn.close()

        self._process = process
        self._conn = parent_conn
        self._reader = loop.create_task(self._read_loop())

        try:
            pid = await asyncio.wait_for(asyncio.shield(self._ready), timeout=self._start_timeout)
        except asyncio.TimeoutError as exc:
            await self.close()
            raise WorkerStartupError(
                f"Cluster worker did not report ready within {self._start_timeout}s"
            ) from exc
        except WorkerStartupError:
            await self.close()
            raise

        logger.info(f"Cluster worker started (pid={pid})")
        return self

    async def close(self) -> None:
        """
        Stop the worker immediately and end the result stream.

        Work in progress is abandoned and never delivered. Results already
        delivered to the stream can still be consumed. Safe to call twice.
        """
        if self._closed and self._process is None:
            return
        self._closed = True
        if self._ready is not None and not self._ready.done():
            self._ready.cancel()

        loop = asyncio.get_running_loop()
        process, self._process = self._process, None
        if process is not None:
            if process.is_alive():
                process.terminate()
            await loop.run_in_executor(None, process.join, JOIN_TIMEOUT_SEC)

        if self._reader is not None:
            await self._reader
            self._reader = None

        if self._conn is not None:
            self._conn.close()
            self._conn = None

        self._pending.clear()
        self._finish_stream()
        logger.debug("Cluster worker closed")

    async def __aenter__(self) -> "ClusterWorker":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -----------------------------
    # Requests and results
    # -----------------------------

    def recalculate(self, request: Union[RecalculateRequest, Mapping[str, Any]]) -> int:
        """
        Submit a request without waiting for its result.

        Requests submitted before the worker is ready are queued and sent, in
        order, as soon as the handshake completes.

        Args:
            request: A request model or its wire-form mapping

        Returns:
            The id assigned to this request

        Raises:
            PayloadFormatError: If a mapping does not validate
            WorkerClosedError: If the worker has been closed
        """
        if self._closed:
            raise WorkerClosedError("ClusterWorker is closed")
        if not isinstance(request, RecalculateRequest):
            request = RecalculateRequest.from_mapping(dict(request))

        request_id = self._next_request_id
        self._next_request_id += 1
        payload = request.to_json()

        if self.is_ready:
            self._send(request_id, payload)
        else:
            self._pending.append((request_id, payload))
        return request_id

    async def results(self) -> AsyncIterator[ClusterResult]:
        """Yield completed computations until the worker is closed."""
        while True:
            item = await self._results.get()
            if item is _END_OF_STREAM:
                # Leave the marker for any other consumer
                self._results.put_nowait(_END_OF_STREAM)
                return
            yield item

    def __aiter__(self) -> AsyncIterator[ClusterResult]:
        return self.results()

    # -----------------------------
    # Internals
    # -----------------------------

    def _send(self, request_id: int, payload: str) -> None:
        logger.debug(f"Sending request {request_id} ({len(payload)} bytes)")
        try:
            self._conn.send((request_id, payload))
        except OSError as exc:
            self._closed = True
            raise WorkerClosedError(f"Cluster worker is gone: {exc}") from exc

    def _flush_pending(self) -> None:
        pending, self._pending = self._pending, []
        for request_id, payload in pending:
            self._send(request_id, payload)

    def _finish_stream(self) -> None:
        if not self._stream_closed:
            self._stream_closed = True
            self._results.put_nowait(_END_OF_STREAM)

    def _receive(self) -> Tuple[str, Any]:
        """Block for the next message and decode it (runs in an executor thread)."""
        message = self._conn.recv()
        kind = message[0]
        if kind == READY:
            return READY, message[1]
        if kind == RESULT:
            _, request_id, text = message
            try:
                response = decode_response(text)
                if response.status == "error":
                    return "error", f"request {request_id}: {response.error}"
                return RESULT, result_from_response(response)
            except PayloadFormatError as exc:
                return "error", f"request {request_id}: {exc}"
        return "error", f"unexpected message kind {kind!r}"

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                try:
                    kind, value = await loop.run_in_executor(None, self._receive)
                except (EOFError, OSError):
                    break

                if kind == READY:
                    if not self._ready.done():
                        self._ready.set_result(value)
                        try:
                            self._flush_pending()
                        except WorkerClosedError as exc:
                            logger.error(f"Could not deliver queued requests: {exc}")
                            break
                elif kind == RESULT:
                    self._results.put_nowait(value)
                else:
                    logger.error(f"Cluster worker reported a failure: {value}")
        finally:
            if not self._ready.done():
                self._ready.set_exception(
                    WorkerStartupError("Cluster worker exited before reporting ready")
                )
            if not self._closed:
                logger.error("Cluster worker exited unexpectedly")
                self._closed = True
            self._finish_stream()


__all__ = ["ClusterWorker", "DEFAULT_START_TIMEOUT_SEC"]
