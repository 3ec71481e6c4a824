from __future__ import annotations

import os

import pytest

from servicedesk.config import derive_ws_url, get_settings
from servicedesk.utils.env import load_env_file


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
  for name in ("SERVICEDESK_ENV", "SERVICEDESK_API_URL", "SERVICEDESK_WS_URL", "SERVICEDESK_JWT_SECRET", "SERVICEDESK_RECONNECT_MAX_ATTEMPTS", "SERVICEDESK_ALLOWED_ORIGINS"):
    monkeypatch.delenv(name, raising=False)
  get_settings.cache_clear()
  yield
  get_settings.cache_clear()


def test_defaults_match_reconnect_schedule() -> None:
  settings = get_settings()
  assert settings.reconnect_base_seconds == 2.0
  assert settings.reconnect_max_seconds == 10.0
  assert settings.reconnect_max_attempts == 5
  assert settings.ws_url == "ws://localhost:5000/ws"


def test_ws_url_is_derived_from_api_url(monkeypatch) -> None:
  monkeypatch.setenv("SERVICEDESK_API_URL", "https://desk.example.com/api/")
  assert get_settings().ws_url == "wss://desk.example.com/ws"


def test_explicit_ws_url_wins(monkeypatch) -> None:
  monkeypatch.setenv("SERVICEDESK_WS_URL", "ws://push.internal:9000/ws")
  assert get_settings().ws_url == "ws://push.internal:9000/ws"


def test_invalid_integer_names_the_variable(monkeypatch) -> None:
  monkeypatch.setenv("SERVICEDESK_RECONNECT_MAX_ATTEMPTS", "many")
  with pytest.raises(ValueError, match="SERVICEDESK_RECONNECT_MAX_ATTEMPTS"):
    get_settings()


def test_production_requires_jwt_secret(monkeypatch) -> None:
  monkeypatch.setenv("SERVICEDESK_ENV", "production")
  with pytest.raises(ValueError, match="SERVICEDESK_JWT_SECRET"):
    get_settings()


def test_wildcard_origins_rejected(monkeypatch) -> None:
  monkeypatch.setenv("SERVICEDESK_ALLOWED_ORIGINS", "http://a.example, *")
  with pytest.raises(ValueError):
    get_settings()


def test_derive_ws_url_without_api_suffix() -> None:
  assert derive_ws_url("http://localhost:8080") == "ws://localhost:8080/ws"


def test_env_file_does_not_override_existing_values(tmp_path, monkeypatch) -> None:
  env_file = tmp_path / ".env"
  env_file.write_text('# local\nexport SERVICEDESK_PAGE_SIZE="25"\nSERVICEDESK_ENV=staging\nnot a pair\n', encoding="utf-8")
  environ = {"SERVICEDESK_ENV": "development"}
  monkeypatch.setattr(os, "environ", environ)

  applied = load_env_file(env_file)

  assert environ == {"SERVICEDESK_ENV": "development", "SERVICEDESK_PAGE_SIZE": "25"}
  assert applied == {"SERVICEDESK_PAGE_SIZE": "25"}
