"""Pytest fixtures and configuration."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient

# Set environment variables before importing app modules
os.environ["ENVIRONMENT"] = "test"
os.environ["DEMO_MODE"] = "true"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["ENCRYPTION_KEYS"] = "1:a2tra2tra2tra2tra2tra2tra2tra2tra2tra2tra2s="
os.environ["BCRYPT_ROUNDS"] = "4"

from app.auth.rate_limit import RateLimiter  # noqa: E402
from app.crypto.codec import FieldCodec, KeyRegistry  # noqa: E402
from app.repositories.local_repo import LocalRepository  # noqa: E402

TEST_KEY = b"k" * 32
ROTATED_KEY = b"r" * 32
DEMO_USER = "test-user"


class FrozenClock:
    """Callable clock returning a fixed, adjustable instant."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def codec() -> FieldCodec:
    return FieldCodec(KeyRegistry(keys={1: TEST_KEY}, active_version=1))


@pytest.fixture
def rotated_codec() -> FieldCodec:
    """Codec that knows the test key and seals new values with version 2."""
    return FieldCodec(KeyRegistry(keys={1: TEST_KEY, 2: ROTATED_KEY}, active_version=2))


@pytest.fixture
def repo() -> LocalRepository:
    return LocalRepository()


@pytest.fixture
def user_id(repo: LocalRepository) -> str:
    repo.create_user(
        {
            "id": "user-1",
            "email": "user@example.com",
            "name": "Test User",
            "default_currency": "USD",
            "encryption_key_version": 1,
        }
    )
    return "user-1"


@pytest.fixture
def frozen_clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def rate_limiter() -> RateLimiter:
    # Fixed at the start of a 60s window
    return RateLimiter(max_requests=120, window_seconds=60, clock=lambda: 1_000_020.0)


@pytest.fixture
def client(repo, codec, rate_limiter) -> Generator[TestClient, None, None]:
    """Test client on a fresh in-memory repository, signed in via demo mode."""
    from app.api.deps import get_rate_limiter, get_repo
    from app.crypto.codec import get_codec
    from app.main import app

    app.dependency_overrides[get_repo] = lambda: repo
    app.dependency_overrides[get_codec] = lambda: codec
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    client = TestClient(app)
    client.headers["X-Demo-User-Id"] = DEMO_USER
    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(client: TestClient) -> TestClient:
    """Same app and repository, without the demo session header."""
    from app.main import app

    return TestClient(app)


@pytest.fixture
def issue_key(client: TestClient) -> Callable[..., str]:
    """Issue an API key for the demo user through the API and return its token."""

    def _issue(*scopes: str, **extra: Any) -> str:
        response = client.post("/api-keys", json={"scopes": list(scopes), **extra})
        assert response.status_code == 201, response.text
        return response.json()["token"]

    return _issue
