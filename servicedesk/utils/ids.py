"""Identifier utilities."""

from __future__ import annotations

import secrets
import string
import uuid

TEMP_ID_PREFIX = "tmp-"


def generate_notification_id() -> str:
  """Return a new server-side notification identifier."""
  return str(uuid.uuid4())


def generate_temp_id(size: int = 12) -> str:
  """Return a client-side placeholder id for a not-yet-acknowledged record."""
  alphabet = string.ascii_letters + string.digits
  return TEMP_ID_PREFIX + "".join(secrets.choice(alphabet) for _ in range(size))


def is_temp_id(value: str) -> bool:
  """Return True when the id was minted locally by generate_temp_id."""
  return value.startswith(TEMP_ID_PREFIX)
