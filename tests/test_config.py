"""
Tests for profile loading and clustering options (marker_cluster/tools)
"""

import logging

import pytest

from marker_cluster.exceptions import PayloadFormatError
from marker_cluster.tools import (
    ClusterOptions,
    ConfigLoader,
    get_config,
    resolve_level,
    setup_logging,
    setup_worker_logging,
)
from marker_cluster.tools.logging import PACKAGE_LOGGER
from marker_cluster.tools.config_loader import PROFILE_ENV_VAR
from marker_cluster.worker import ClusterWorker

from tests.conftest import make_marker


class TestConfigLoader:
    """Test YAML profile discovery."""

    def test_default_profile(self):
        config = ConfigLoader.load_profile()

        assert config["clustering"]["max_cluster_radius"] == 80
        assert config["worker"]["start_timeout_sec"] == 30

    def test_missing_profile_lists_available(self):
        """Test that the error names the profiles that do exist."""
        with pytest.raises(FileNotFoundError, match="dense-markers"):
            ConfigLoader.load_profile("does-not-exist")

    def test_profile_from_env(self, monkeypatch):
        monkeypatch.setenv(PROFILE_ENV_VAR, "sparse-markers")

        assert ConfigLoader.get_profile_from_env() == "sparse-markers"
        assert get_config()["clustering"]["max_cluster_radius"] == 40

    def test_default_without_env(self, monkeypatch):
        monkeypatch.delenv(PROFILE_ENV_VAR, raising=False)

        assert get_config() == ConfigLoader.load_profile("default")


class TestClusterOptions:
    """Test conversion of profiles into request and worker settings."""

    def test_from_profile(self):
        options = ClusterOptions.from_profile("dense-markers")

        assert options.min_zoom == 3
        assert options.max_zoom == 19
        assert options.max_cluster_radius == 120
        assert options.start_timeout_sec == 60.0
        assert options.projection_cache_size == 262144
        assert options.log_level == "WARNING"

    def test_from_profile_uses_env(self, monkeypatch):
        monkeypatch.setenv(PROFILE_ENV_VAR, "sparse-markers")

        assert ClusterOptions.from_profile().max_zoom == 16

    def test_from_dict_defaults_and_extra(self):
        """Test that missing sections fall back to defaults and unknown keys are kept."""
        options = ClusterOptions.from_dict(
            {"clustering": {"max_zoom": 12}, "display": {"theme": "dark"}}
        )

        assert options.max_zoom == 12
        assert options.min_zoom == 0
        assert options.max_cluster_radius == 80
        assert options.log_level is None
        assert options.extra == {"display": {"theme": "dark"}}

    def test_make_request(self):
        """Test building a request from options."""
        options = ClusterOptions(min_zoom=2, max_zoom=10, max_cluster_radius=50)

        request = options.make_request([make_marker(1.0, 2.0)])

        assert request.min_zoom == 2
        assert request.max_zoom == 10
        assert request.max_cluster_radius == 50
        assert request.zoom == 10.0
        assert request.markers[0].point.longitude == 2.0

        assert options.make_request([], zoom=4).zoom == 4.0

    def test_make_request_reuses_marker_models(self):
        options = ClusterOptions()
        first = options.make_request([make_marker(1.0, 2.0)])

        second = options.make_request(first.markers)

        assert second.markers == first.markers

    def test_make_request_validates(self):
        with pytest.raises(PayloadFormatError):
            ClusterOptions(max_cluster_radius=0).make_request([])

    def test_worker_from_options(self):
        """Test that worker settings are taken from the options."""
        options = ClusterOptions(start_timeout_sec=5.0, projection_cache_size=128, log_level="DEBUG")

        worker = ClusterWorker.from_options(options)

        assert worker._start_timeout == 5.0
        assert worker._cache_size == 128
        assert worker._log_level == "DEBUG"
        assert not worker.closed


class TestLogging:
    """Test logging setup."""

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "cluster.log"
        setup_logging("INFO", str(log_file))

        logging.getLogger("marker_cluster.test").warning("grid rebuilt")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "grid rebuilt" in log_file.read_text()

        root = logging.getLogger()
        for handler in list(root.handlers):
            if getattr(handler, "baseFilename", None) == str(log_file):
                root.removeHandler(handler)
                handler.close()
        logging.getLogger(PACKAGE_LOGGER).setLevel(logging.NOTSET)

    def test_resolve_level(self):
        assert resolve_level("debug") == logging.DEBUG
        assert resolve_level(None) == logging.INFO
        assert resolve_level(logging.ERROR) == logging.ERROR

    def test_resolve_unknown_level(self):
        with pytest.raises(ValueError, match="Unknown log level 'LOUD'"):
            resolve_level("LOUD")

    def test_setup_logging_sets_package_level(self):
        """Test that the requested level reaches the package logger."""
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        try:
            setup_logging("WARNING")
            assert package_logger.level == logging.WARNING
            assert not logging.getLogger("marker_cluster.tree.builder").isEnabledFor(logging.INFO)
        finally:
            package_logger.setLevel(logging.NOTSET)

    def test_setup_worker_logging_replaces_handlers(self, monkeypatch):
        """Test that the worker setup forces a fresh root configuration tagged by process."""
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        try:
            setup_worker_logging("debug")
        finally:
            package_level = logging.getLogger(PACKAGE_LOGGER).level
            logging.getLogger(PACKAGE_LOGGER).setLevel(logging.NOTSET)

        assert len(calls) == 1
        assert calls[0]["force"] is True
        assert calls[0]["level"] == logging.DEBUG
        assert "%(processName)s" in calls[0]["format"]
        assert package_level == logging.DEBUG
