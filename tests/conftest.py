"""
Test configuration.

Registers tier markers and auto-assigns them by path. No test touches the
network: collaborators are injected fakes or in-memory stores.
"""

import os

import pytest

os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("INTERNAL_AUTH_SECRET", "test-secret")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (may use real services)")
    config.addinivalue_line("markers", "api: API endpoint tests")


def pytest_collection_modifyitems(config, items):
    """
    Auto-assign tier markers:
    - tests/integration/** => integration
    - everything else      => unit
    """
    for item in items:
        path = str(getattr(item, "fspath", ""))
        if item.get_closest_marker("integration") or item.get_closest_marker("unit"):
            continue
        if "/tests/integration/" in path:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
