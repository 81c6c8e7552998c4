"""Configuration and logging helpers."""

from .config_loader import ClusterOptions, ConfigLoader, get_config
from .logging import resolve_level, setup_logging, setup_worker_logging

__all__ = [
    "ClusterOptions",
    "ConfigLoader",
    "get_config",
    "resolve_level",
    "setup_logging",
    "setup_worker_logging",
]
