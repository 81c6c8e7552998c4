"""
Configuration loader for clustering profiles and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import yaml

from ..schemas.models import MarkerPayload, RecalculateRequest


PROFILE_ENV_VAR = "MARKER_CLUSTER_PROFILE"
DEFAULT_PROFILE = "default"


class ConfigLoader:
    """Load and manage configuration from YAML files and environment."""

    CONFIG_DIR = Path(__file__).parent.parent.parent / "configs"

    @classmethod
    def load_profile(cls, profile_name: str = DEFAULT_PROFILE) -> Dict[str, Any]:
        """
        Load a clustering profile.

        Args:
            profile_name: Name of the profile (default, dense-markers, sparse-markers)

        Returns:
            Dictionary with configuration values

        Raises:
            FileNotFoundError: If profile doesn't exist
        """
        profile_path = cls.CONFIG_DIR / f"{profile_name}.yaml"

        if not profile_path.exists():
            available = sorted(f.stem for f in cls.CONFIG_DIR.glob("*.yaml"))
            raise FileNotFoundError(
                f"Profile '{profile_name}' not found. Available profiles: {', '.join(available)}"
            )

        with open(profile_path, "r") as f:
            return yaml.safe_load(f) or {}

    @classmethod
    def get_profile_from_env(cls) -> Optional[str]:
        """Get profile name from the MARKER_CLUSTER_PROFILE environment variable."""
        return os.getenv(PROFILE_ENV_VAR)

    @classmethod
    def load_default_or_env_profile(cls) -> Dict[str, Any]:
        """
        Load the profile named by the environment, or the default profile.

        Returns:
            Configuration dictionary
        """
        profile = cls.get_profile_from_env() or DEFAULT_PROFILE
        return cls.load_profile(profile)


def get_config() -> Dict[str, Any]:
    """Convenience function to get current configuration."""
    return ConfigLoader.load_default_or_env_profile()


@dataclass
class ClusterOptions:
    """Defaults for building requests and running the worker."""

    min_zoom: int = 0
    """Coarsest zoom level that gets clusters (the root sits one level above)."""

    max_zoom: int = 18
    """Most detailed zoom level that gets clusters."""

    max_cluster_radius: int = 80
    """Merge radius in pixels; also the cell size of every grid."""

    start_timeout_sec: float = 30.0
    """How long to wait for the worker readiness handshake."""

    projection_cache_size: int = 65536
    """Entries in the per-request projection cache."""

    log_level: Optional[str] = None
    """Logging level applied inside the worker process (None = leave as is)."""

    extra: Dict[str, Any] = field(default_factory=dict)
    """Unrecognised profile keys, kept for callers."""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClusterOptions":
        """Build options from a profile dictionary with ``clustering``/``worker`` sections."""
        clustering = dict(data.get("clustering") or {})
        worker = dict(data.get("worker") or {})
        logging_cfg = dict(data.get("logging") or {})
        known = {"clustering", "worker", "logging"}

        defaults = cls()
        return cls(
            min_zoom=int(clustering.get("min_zoom", defaults.min_zoom)),
            max_zoom=int(clustering.get("max_zoom", defaults.max_zoom)),
            max_cluster_radius=int(clustering.get("max_cluster_radius", defaults.max_cluster_radius)),
            start_timeout_sec=float(worker.get("start_timeout_sec", defaults.start_timeout_sec)),
            projection_cache_size=int(worker.get("projection_cache_size", defaults.projection_cache_size)),
            log_level=logging_cfg.get("level", defaults.log_level),
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def from_profile(cls, profile_name: Optional[str] = None) -> "ClusterOptions":
        """Load options from a named profile, or from the environment/default profile."""
        if profile_name:
            return cls.from_dict(ConfigLoader.load_profile(profile_name))
        return cls.from_dict(ConfigLoader.load_default_or_env_profile())

    def make_request(
        self,
        markers: Iterable[Union[MarkerPayload, Mapping[str, Any]]],
        zoom: Optional[float] = None,
    ) -> RecalculateRequest:
        """Build a request from these options; ``zoom`` defaults to ``max_zoom``."""
        marker_list: List[Any] = list(markers)
        return RecalculateRequest.from_mapping(
            {
                "minZoom": self.min_zoom,
                "maxZoom": self.max_zoom,
                "zoom": float(self.max_zoom if zoom is None else zoom),
                "maxClusterRadius": self.max_cluster_radius,
                "markers": [
                    m.model_dump() if isinstance(m, MarkerPayload) else dict(m)
                    for m in marker_list
                ],
            }
        )
