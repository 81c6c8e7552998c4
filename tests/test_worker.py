"""
Tests for the background computation channel (marker_cluster/worker)

Covers the wire protocol, request handling inside the worker process and the
asyncio-facing ClusterWorker lifecycle. End-to-end tests spawn a real process.
"""

import asyncio
import json
import logging
import math
import multiprocessing
import os

import pytest

from marker_cluster.exceptions import PayloadFormatError, WorkerClosedError, WorkerStartupError
from marker_cluster.schemas.models import RecalculateRequest
from marker_cluster.spatial import WebMercatorProjection
from marker_cluster.tree import build_cluster_tree
from marker_cluster.worker import (
    ClusterWorker,
    decode_response,
    encode_error,
    encode_result,
    handle_request,
    result_from_response,
)

from tests.conftest import assert_tree_connected, make_marker, make_request


RESULT_TIMEOUT_SEC = 60.0


class _FakeContext:
    """multiprocessing context stand-in that builds a custom Process class."""

    def __init__(self, process_cls):
        self._process_cls = process_cls

    def Pipe(self, duplex=True):
        return multiprocessing.Pipe(duplex)

    def Process(self, **kwargs):
        return self._process_cls(**kwargs)


class _FailingProcess:
    def __init__(self, **kwargs):
        self.pid = None

    def start(self):
        raise OSError("no more processes")


class _SilentProcess:
    """Process that never runs its target, so the pipe hangs up before ready."""

    def __init__(self, **kwargs):
        self.pid = None

    def start(self):
        pass

    def is_alive(self):
        return False

    def terminate(self):
        pass

    def join(self, timeout=None):
        pass


class _PolarFailingProjection(WebMercatorProjection):
    """Projection that refuses markers north of 80 degrees."""

    def project(self, point, zoom):
        if point.latitude > 80.0:
            raise RuntimeError("polar marker")
        return super().project(point, zoom)


class _ExitingProjection(WebMercatorProjection):
    """Projection that kills the worker process on first use."""

    def project(self, point, zoom):
        os._exit(3)


class _BrokenConnection:
    closed = False

    def send(self, obj):
        raise BrokenPipeError(32, "Broken pipe")


async def _collect(worker, count):
    stream = worker.results()
    return [await asyncio.wait_for(anext(stream), RESULT_TIMEOUT_SEC) for _ in range(count)]


async def _with_timeout(stream, timeout):
    """Re-yield ``stream`` items, failing if any single item takes longer than ``timeout``."""
    while True:
        try:
            item = await asyncio.wait_for(anext(stream), timeout)
        except StopAsyncIteration:
            return
        yield item


# ==============================================================================
# Protocol Tests
# ==============================================================================

class TestProtocol:
    """Test response encoding and caller-side reconstruction."""

    def test_result_round_trip(self, tokyo_markers):
        """Test that a decoded response rebuilds an equivalent result."""
        original = build_cluster_tree(make_request(tokyo_markers[:80]))

        rebuilt = result_from_response(decode_response(encode_result(original, 3)))

        assert rebuilt.tree.shape() == original.tree.shape()
        assert sorted(rebuilt.grid_clusters) == sorted(original.grid_clusters)
        for zoom, grid in original.grid_unclustered.items():
            assert dict(rebuilt.grid_unclustered[zoom].items()) == dict(grid.items())
        assert rebuilt.diagnostics.num_markers == 80
        assert rebuilt.tree is not original.tree

    def test_rebuilt_grids_answer_queries(self, zoom10_pair):
        """Test that reconstructed grids behave like the originals."""
        original = build_cluster_tree(make_request(zoom10_pair))
        rebuilt = result_from_response(decode_response(encode_result(original, 0)))

        grid = rebuilt.grid_unclustered[15]
        point = grid.point_of(rebuilt.tree.leaves[0].id)
        assert grid.nearest(point) == rebuilt.tree.leaves[0].id
        assert grid.cell_size == 80

    def test_error_response_raises(self):
        """Test that an error envelope cannot be turned into a result."""
        response = decode_response(encode_error(7, "bad markers"))

        assert response.status == "error"
        assert response.request_id == 7
        with pytest.raises(PayloadFormatError, match="bad markers"):
            result_from_response(response)

    def test_decode_garbage(self):
        with pytest.raises(PayloadFormatError):
            decode_response("{not json")

    def test_ok_response_requires_tree(self):
        """Test that a success status without a tree is rejected."""
        with pytest.raises(PayloadFormatError):
            decode_response(json.dumps({"requestId": 1, "status": "ok"}))


# ==============================================================================
# Request Handling Tests
# ==============================================================================

class TestHandleRequest:
    """Test the worker-side request handler without spawning a process."""

    def test_builds_tree(self, close_pair):
        """Test that a valid payload yields an ok response with the built tree."""
        request = make_request(close_pair)

        response = decode_response(handle_request(4, request.to_json()))

        assert response.status == "ok"
        assert response.request_id == 4
        result = result_from_response(response)
        assert result.tree.shape() == build_cluster_tree(request).tree.shape()

    def test_malformed_json(self, caplog):
        """Test that undecodable input produces an error envelope, not an exception."""
        with caplog.at_level(logging.WARNING, logger="marker_cluster.worker.process"):
            response = decode_response(handle_request(2, "this is not json"))

        assert response.status == "error"
        assert response.tree is None
        assert "Rejecting request 2" in caplog.text

    def test_missing_markers(self):
        """Test that a payload without markers is rejected."""
        payload = json.dumps({"minZoom": 0, "maxZoom": 18, "zoom": 10, "maxClusterRadius": 80})

        response = decode_response(handle_request(5, payload))

        assert response.status == "error"
        assert "markers" in response.error

    def test_build_failure_returns_error(self, caplog):
        """Test that an exception raised while building becomes an error envelope."""
        request = make_request([make_marker(0.0, 0.0), make_marker(85.0, 0.0)])

        with caplog.at_level(logging.ERROR, logger="marker_cluster.worker.process"):
            text = handle_request(6, request.to_json(), _PolarFailingProjection())

        response = decode_response(text)
        assert response.status == "error"
        assert response.tree is None
        assert "RuntimeError: polar marker" in response.error
        assert "Build failed for request 6" in caplog.text

    def test_build_failure_does_not_poison_next_request(self, close_pair):
        projection = _PolarFailingProjection()
        handle_request(0, make_request([make_marker(85.0, 0.0)]).to_json(), projection)

        response = decode_response(handle_request(1, make_request(close_pair).to_json(), projection))

        assert response.status == "ok"


class TestRequestValidation:
    """Test request schema validation."""

    def test_non_positive_radius(self, close_pair):
        with pytest.raises(PayloadFormatError):
            make_request(close_pair, radius=0)

    def test_latitude_out_of_range(self):
        with pytest.raises(PayloadFormatError):
            make_request([make_marker(91.0, 0.0)])

    def test_snake_case_names_accepted(self):
        """Test that field names work as well as wire aliases."""
        request = RecalculateRequest(
            min_zoom=2, max_zoom=4, zoom=3.0, max_cluster_radius=60, markers=[]
        )

        assert request.zoom_levels == 3
        assert json.loads(request.to_json())["maxClusterRadius"] == 60

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_zoom": 1100},
            {"min_zoom": -1},
            {"min_zoom": 31, "max_zoom": 3},
            {"zoom": 1099.0},
        ],
    )
    def test_zoom_out_of_range(self, close_pair, overrides):
        """Test that zooms beyond the supported range are rejected in the caller."""
        with pytest.raises(PayloadFormatError):
            make_request(close_pair, **overrides)

    def test_deepest_supported_zoom_builds(self, close_pair):
        request = make_request(close_pair, min_zoom=28, max_zoom=30, zoom=30.0)

        assert build_cluster_tree(request).diagnostics.zoom_levels == 3

    @pytest.mark.parametrize(
        "metadata",
        [
            {"width": math.inf},
            {"height": -math.inf},
            {"left": math.nan},
            {"top": math.inf},
        ],
    )
    def test_non_finite_metadata_rejected(self, metadata):
        """Test that metadata which cannot survive JSON is refused before sending."""
        with pytest.raises(PayloadFormatError):
            make_request([make_marker(0.0, 0.0, **metadata)])

    def test_metadata_survives_wire_unchanged(self):
        """Test that a locally valid request decodes to the same markers in the worker."""
        request = make_request([make_marker(1.0, 2.0, width=1e300, height=-0.0, left=-7.25, top=3.5)])

        assert RecalculateRequest.from_json(request.to_json()).markers == request.markers

    def test_payload_error_is_value_error(self):
        """Test that callers catching ValueError also see payload errors."""
        with pytest.raises(ValueError):
            RecalculateRequest.from_json("[]")


# ==============================================================================
# Channel Tests
# ==============================================================================

class TestClusterWorker:
    """Test the asyncio channel against a real background process."""

    def test_result_matches_in_process_build(self, tokyo_markers):
        """Test that the worker returns the same tree the builder produces locally."""
        request = make_request(tokyo_markers)

        async def scenario():
            async with ClusterWorker() as worker:
                assert worker.is_ready
                assert worker.pid is not None
                request_id = worker.recalculate(request)
                (result,) = await _collect(worker, 1)
            return request_id, result

        request_id, result = asyncio.run(scenario())

        assert request_id == 0
        assert result.tree.shape() == build_cluster_tree(request).tree.shape()
        assert_tree_connected(result.tree)

    def test_results_in_submission_order(self):
        """Test that multiple requests are answered in the order they were sent."""
        requests = [
            make_request([make_marker(0.0, 0.001 * i) for i in range(n)])
            for n in (5, 1, 3)
        ]

        async def scenario():
            async with ClusterWorker() as worker:
                ids = [worker.recalculate(r) for r in requests]
                results = await _collect(worker, len(requests))
            return ids, results

        ids, results = asyncio.run(scenario())

        assert ids == [0, 1, 2]
        assert [r.diagnostics.num_markers for r in results] == [5, 1, 3]

    def test_requests_before_start_are_queued(self, close_pair):
        """Test that requests submitted before the handshake are delivered after it."""
        request = make_request(close_pair)

        async def scenario():
            worker = ClusterWorker()
            worker.recalculate(request)
            worker.recalculate(request.model_dump(by_alias=True))
            assert not worker.is_ready
            await worker.start()
            try:
                return await _collect(worker, 2)
            finally:
                await worker.close()

        results = asyncio.run(scenario())

        assert len(results) == 2
        assert results[0].tree.shape() == results[1].tree.shape()

    def test_close_ends_stream(self, close_pair):
        """Test that closing the worker finishes every consumer's stream."""

        async def scenario():
            worker = await ClusterWorker().start()
            worker.recalculate(make_request(close_pair))
            first = await _collect(worker, 1)
            await worker.close()
            await worker.close()

            remaining = [r async for r in worker.results()]
            again = [r async for r in worker]
            return first, remaining, again, worker

        first, remaining, again, worker = asyncio.run(scenario())

        assert len(first) == 1
        assert remaining == []
        assert again == []
        assert worker.closed
        assert worker.pid is None

    def test_recalculate_after_close(self, close_pair):
        async def scenario():
            worker = ClusterWorker()
            await worker.close()
            with pytest.raises(WorkerClosedError):
                worker.recalculate(make_request(close_pair))
            with pytest.raises(WorkerClosedError):
                await worker.start()

        asyncio.run(scenario())

    def test_invalid_mapping_rejected_before_sending(self):
        """Test that a malformed mapping fails in the caller, not the worker."""
        worker = ClusterWorker()

        with pytest.raises(PayloadFormatError):
            worker.recalculate({"minZoom": 0, "maxZoom": 18})

    def test_worker_error_is_logged_and_skipped(self, close_pair, caplog):
        """Test that an error envelope produces a log entry and no stream item."""

        async def scenario():
            async with ClusterWorker() as worker:
                worker._send(99, "this is not json")
                worker.recalculate(make_request(close_pair))
                return await _collect(worker, 1)

        with caplog.at_level(logging.ERROR, logger="marker_cluster.worker.channel"):
            results = asyncio.run(scenario())

        assert len(results) == 1
        assert results[0].diagnostics.num_markers == 2
        assert "request 99" in caplog.text

    def test_spawn_failure(self):
        """Test that a process that cannot be spawned surfaces as a startup error."""
        worker = ClusterWorker(mp_context=_FakeContext(_FailingProcess))

        with pytest.raises(WorkerStartupError, match="no more processes"):
            asyncio.run(worker.start())

        assert worker.closed

    def test_exit_before_ready(self):
        """Test that a worker hanging up before the handshake is reported."""
        worker = ClusterWorker(mp_context=_FakeContext(_SilentProcess), start_timeout=10.0)

        with pytest.raises(WorkerStartupError, match="before reporting ready"):
            asyncio.run(worker.start())

        assert worker.closed
        assert not worker.is_ready

    def test_worker_survives_failed_build(self, close_pair, caplog):
        """Test that a request whose build raises is skipped and the next one is answered."""

        async def scenario():
            async with ClusterWorker(_PolarFailingProjection()) as worker:
                worker.recalculate(make_request([make_marker(85.0, 0.0)]))
                worker.recalculate(make_request(close_pair))
                results = await _collect(worker, 1)
                return results, worker.is_ready

        with caplog.at_level(logging.ERROR, logger="marker_cluster.worker.channel"):
            results, still_ready = asyncio.run(scenario())

        assert [r.diagnostics.num_markers for r in results] == [2]
        assert still_ready
        assert "request 0" in caplog.text

    def test_worker_crash_closes_channel(self, close_pair):
        """Test that a worker dying mid-stream ends the stream and refuses new work."""

        async def scenario():
            async with ClusterWorker(_ExitingProjection()) as worker:
                worker.recalculate(make_request(close_pair))
                stream = worker.results()
                remaining = [
                    r async for r in _with_timeout(stream, RESULT_TIMEOUT_SEC)
                ]
                state = (worker.closed, worker.is_ready)
                with pytest.raises(WorkerClosedError):
                    worker.recalculate(make_request(close_pair))
            return remaining, state

        remaining, (closed, ready) = asyncio.run(scenario())

        assert remaining == []
        assert closed
        assert not ready

    def test_broken_pipe_becomes_closed_error(self):
        """Test that a send on a dead pipe raises WorkerClosedError, not OSError."""
        worker = ClusterWorker()
        worker._conn = _BrokenConnection()

        with pytest.raises(WorkerClosedError, match="Broken pipe"):
            worker._send(0, "{}")

        assert worker.closed

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            ClusterWorker(log_level="VERBOSE")

    def test_start_twice(self, close_pair):
        async def scenario():
            async with ClusterWorker() as worker:
                with pytest.raises(WorkerStartupError):
                    await worker.start()

        asyncio.run(scenario())
