"""Exceptions raised by the marker clustering engine."""


class MarkerClusterError(Exception):
    """Base class for marker clustering exceptions."""

    pass


class PayloadFormatError(MarkerClusterError, ValueError):
    """Raised when a request or response payload cannot be decoded."""

    pass


class WorkerStartupError(MarkerClusterError, RuntimeError):
    """Raised when the background worker cannot be spawned or never reports ready."""

    pass


class WorkerClosedError(MarkerClusterError, RuntimeError):
    """Raised when work is submitted to a worker that has been closed."""

    pass
