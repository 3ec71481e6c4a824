"""Local .env support for development runs of the client and the reference server."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VARIABLE = "SERVICEDESK_ENV_FILE"


def default_env_path() -> Path:
  """Return SERVICEDESK_ENV_FILE when set, else the .env beside the package."""

  explicit = os.getenv(ENV_FILE_VARIABLE)
  if explicit:
    return Path(explicit).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_lines(lines: list[str]) -> dict[str, str]:
  """Parse KEY=value lines; comments, blanks and malformed lines are skipped."""

  values: dict[str, str] = {}
  for raw_line in lines:
    line = raw_line.strip()
    if not line or line.startswith("#"):
      continue
    line = line.removeprefix("export ").lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
      value = value[1:-1]
    values[key] = value
  return values


def load_env_file(path: Path, *, override: bool = False) -> dict[str, str]:
  """Copy the file's values into os.environ and return the ones applied."""

  if not path.is_file():
    return {}

  applied: dict[str, str] = {}
  for key, value in parse_env_lines(path.read_text(encoding="utf-8").splitlines()).items():
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied[key] = value
  return applied
