"""
Pytest configuration and shared test helpers for backend tests.
"""
import os

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

import pytest

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from auth import create_access_token


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


def bearer(role: str, email: str = "staff@notary.example", portal_user_id: str = "pu-staff") -> dict:
    token = create_access_token({
        "sub": portal_user_id,
        "portal_user_id": portal_user_id,
        "email": email,
        "role": role,
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers():
    return bearer("ROLE_NOTARY")


@pytest.fixture
def client_headers():
    return bearer("ROLE_CLIENT", email="jane@example.com", portal_user_id="pu-jane")
