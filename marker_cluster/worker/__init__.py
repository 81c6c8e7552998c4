"""Background execution of cluster tree builds."""

from .channel import DEFAULT_START_TIMEOUT_SEC, ClusterWorker
from .process import handle_request, worker_main
from .protocol import decode_response, encode_error, encode_result, result_from_response

__all__ = [
    "ClusterWorker",
    "DEFAULT_START_TIMEOUT_SEC",
    "decode_response",
    "encode_error",
    "encode_result",
    "handle_request",
    "result_from_response",
    "worker_main",
]
