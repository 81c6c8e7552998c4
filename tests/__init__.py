"""Test package for marker-cluster.

This package contains:
- Unit tests (test_spatial.py, test_tree.py, test_config.py)
- Worker channel and protocol tests (test_worker.py)
- Test configuration and shared fixtures (conftest.py)
"""
