"""
Pytest configuration and shared test helpers for backend tests.
"""
import os

# Skip MongoDB connection on startup when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)
