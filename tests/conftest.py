"""Shared fixtures for the client pipeline and the reference server."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from servicedesk.config import Settings
from servicedesk.core.security import issue_token
from servicedesk.server.main import create_app


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return Settings(
    environment="test",
    debug=False,
    api_url="http://test/api",
    ws_url="ws://test/ws",
    http_timeout_seconds=5.0,
    reconnect_base_seconds=0.0,
    reconnect_max_seconds=0.0,
    reconnect_max_attempts=5,
    page_size=10,
    db_dsn="sqlite+aiosqlite://",
    jwt_secret="test-secret-0123456789-abcdefghijklmnop",
    jwt_algorithm="HS256",
    allowed_origins=("http://localhost:3000",),
    log_max_bytes=1_000_000,
    log_backup_count=1,
    log_http_4xx=False,
  )


@pytest.fixture
def token_for(settings: Settings) -> Callable[..., str]:
  def _token(user_id: str, role: str = "user") -> str:
    return issue_token(settings, user_id, role=role)

  return _token


@pytest.fixture
def app(settings: Settings, tmp_path) -> FastAPI:
  return create_app(settings, log_dir=tmp_path / "logs")


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
  # Entering the context runs the lifespan, which creates the tables.
  with TestClient(app) as test_client:
    yield test_client


@pytest.fixture
def auth_headers(token_for: Callable[..., str]) -> Callable[..., dict[str, str]]:
  def _headers(user_id: str, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user_id, role)}"}

  return _headers
