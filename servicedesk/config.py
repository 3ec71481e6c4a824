"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse, urlunparse

from servicedesk.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings shared by the notification client and the reference server."""

  environment: str
  debug: bool
  api_url: str
  ws_url: str
  http_timeout_seconds: float
  reconnect_base_seconds: float
  reconnect_max_seconds: float
  reconnect_max_attempts: int
  page_size: int
  db_dsn: str
  jwt_secret: str
  jwt_algorithm: str
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_int(name: str, default: str, *, minimum: int) -> int:
  raw = os.getenv(name, default)
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if value < minimum:
    raise ValueError(f"{name} must be >= {minimum}.")
  return value


def _parse_float(name: str, default: str, *, minimum: float) -> float:
  raw = os.getenv(name, default)
  try:
    value = float(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be a number.") from exc
  if value < minimum:
    raise ValueError(f"{name} must be >= {minimum}.")
  return value


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
  if "*" in origins:
    raise ValueError("SERVICEDESK_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def derive_ws_url(api_url: str) -> str:
  """Map the REST base URL onto the push channel endpoint (`/api` -> `/ws`)."""
  parsed = urlparse(api_url)
  scheme = "wss" if parsed.scheme == "https" else "ws"
  path = parsed.path.rstrip("/")
  if path.endswith("/api"):
    path = path[: -len("/api")]
  return urlunparse((scheme, parsed.netloc, f"{path}/ws", "", "", ""))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("SERVICEDESK_ENV", "development").lower()
  debug = _parse_bool(os.getenv("SERVICEDESK_DEBUG"))

  api_url = (os.getenv("SERVICEDESK_API_URL") or "http://localhost:5000/api").strip().rstrip("/")
  ws_url = _optional_str(os.getenv("SERVICEDESK_WS_URL")) or derive_ws_url(api_url)

  http_timeout_seconds = _parse_float("SERVICEDESK_HTTP_TIMEOUT_SECONDS", "10", minimum=0.1)

  # Linear backoff: delay = min(attempt * base, ceiling), bounded by max attempts.
  reconnect_base_seconds = _parse_float("SERVICEDESK_RECONNECT_BASE_SECONDS", "2", minimum=0.0)
  reconnect_max_seconds = _parse_float("SERVICEDESK_RECONNECT_MAX_SECONDS", "10", minimum=0.0)
  reconnect_max_attempts = _parse_int("SERVICEDESK_RECONNECT_MAX_ATTEMPTS", "5", minimum=1)

  page_size = _parse_int("SERVICEDESK_PAGE_SIZE", "10", minimum=1)

  db_dsn = (os.getenv("SERVICEDESK_DB_DSN") or "sqlite+aiosqlite:///./servicedesk.db").strip()
  jwt_secret = (os.getenv("SERVICEDESK_JWT_SECRET") or "").strip()
  if not jwt_secret:
    if environment in {"production", "prod"}:
      raise ValueError("SERVICEDESK_JWT_SECRET must be set in production.")
    jwt_secret = "development-secret-change-me-before-deploying"
  jwt_algorithm = (os.getenv("SERVICEDESK_JWT_ALGORITHM") or "HS256").strip()

  allowed_origins = _parse_origins(os.getenv("SERVICEDESK_ALLOWED_ORIGINS"))

  log_max_bytes = _parse_int("SERVICEDESK_LOG_MAX_BYTES", "5242880", minimum=1)  # 5MB default
  log_backup_count = _parse_int("SERVICEDESK_LOG_BACKUP_COUNT", "10", minimum=0)
  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("SERVICEDESK_LOG_HTTP_4XX"))

  return Settings(
    environment=environment,
    debug=debug,
    api_url=api_url,
    ws_url=ws_url,
    http_timeout_seconds=http_timeout_seconds,
    reconnect_base_seconds=reconnect_base_seconds,
    reconnect_max_seconds=reconnect_max_seconds,
    reconnect_max_attempts=reconnect_max_attempts,
    page_size=page_size,
    db_dsn=db_dsn,
    jwt_secret=jwt_secret,
    jwt_algorithm=jwt_algorithm,
    allowed_origins=allowed_origins,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
  )
