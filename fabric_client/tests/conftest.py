"""Pytest fixtures and config."""

import os

import pytest


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up a developer's FABRIC_* settings in tests."""
    for key in list(os.environ):
        if key.startswith("FABRIC_"):
            monkeypatch.delenv(key, raising=False)
    yield
