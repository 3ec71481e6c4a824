import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from servicedesk.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
LOG_FORMATTER = logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT)

# Process-wide logging state; initialize_logging runs its setup once.
_LOG_FILE_PATH: Path | None = None
_LOGGING_INITIALIZED = False


class TruncatedFormatter(logging.Formatter):
  """Formatter that truncates the stack trace to the last few lines."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    # Keep header + last 5 lines of traceback
    if len(lines) > 6:
      return "".join(lines[:1] + ["    ...\n"] + lines[-5:])
    return "".join(lines)


def _rotated_name(default_name: str) -> str:
  """Name backups `app.log-1` instead of `app.log.1`."""
  # RotatingFileHandler appends ".<n>"; swap that last dot for a dash.
  base_filename, _, num = default_name.rpartition(".")
  if num.isdigit():
    return f"{base_filename}-{num}"
  # Not a numbered backup; leave it alone.
  return default_name


def _build_handlers(settings: Settings, log_dir: Path) -> tuple[logging.Handler, logging.Handler, Path]:
  """Create the stdout and rotating file handlers."""
  # Fail loudly at startup rather than losing logs later.
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log directory at {log_dir}: {exc}") from exc

  # One file per process start, named by timestamp.
  log_path = log_dir / f"servicedesk_{time.strftime('%Y%m%d_%H%M%S')}.log"
  try:
    # Touch early so the file exists even if handlers have not flushed yet.
    log_path.touch(exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Failed to create log file at {log_path}: {exc}") from exc

  # Console output gets short tracebacks; the file keeps them whole.
  stream = logging.StreamHandler(sys.stdout)
  stream.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

  # Size-capped file with a bounded number of backups, both from settings.
  file_handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  file_handler.namer = _rotated_name
  file_handler.setFormatter(LOG_FORMATTER)
  return stream, file_handler, log_path


def default_log_dir() -> Path:
  # <repo>/logs, next to the package directory.
  return Path(__file__).resolve().parent.parent.parent / "logs"


def setup_logging(settings: Settings, *, log_dir: Path | None = None) -> Path:
  """Ensure all loggers use our handlers and propagate to root."""
  stream_handler, file_handler, log_path = _build_handlers(settings, log_dir or default_log_dir())
  # Server loggers install their own handlers; replace them so output is not duplicated.
  for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
    log = logging.getLogger(logger_name)
    log.handlers = [stream_handler, file_handler]
    log.propagate = False

  # force=True replaces whatever handlers an earlier import attached to root.
  level = logging.DEBUG if settings.debug else logging.INFO
  logging.basicConfig(level=level, handlers=[stream_handler, file_handler], force=True)
  # websockets logs every frame at DEBUG.
  logging.getLogger("websockets").setLevel(logging.INFO)
  # The touch above should have created it; a missing file means the directory is not writable.
  if not log_path.exists():
    raise RuntimeError(f"Logging initialization failed; log file missing at {log_path}")
  return log_path


def _log_runtime_summary(logger: logging.Logger, settings: Settings) -> None:
  # Only the DSN scheme is logged so credentials never reach the file.
  driver = settings.db_dsn.partition("://")[0] or "unknown"
  logger.info("Service desk env=%s api=%s push=%s db=%s reconnect=%sx base=%.1fs", settings.environment, settings.api_url, settings.ws_url, driver, settings.reconnect_max_attempts, settings.reconnect_base_seconds)


def initialize_logging(settings: Settings, *, log_dir: Path | None = None) -> Path | None:
  """Initialize logging once per process and return the active log file."""
  global _LOG_FILE_PATH, _LOGGING_INITIALIZED
  logger = logging.getLogger("servicedesk.core.logging")
  # Repeat calls (reloads, test apps) reuse the first file.
  if _LOGGING_INITIALIZED:
    return _LOG_FILE_PATH
  _LOG_FILE_PATH = setup_logging(settings, log_dir=log_dir)
  _LOGGING_INITIALIZED = True
  logger.info("Logging initialized. Writing to %s", _LOG_FILE_PATH)
  _log_runtime_summary(logger, settings)
  return _LOG_FILE_PATH
