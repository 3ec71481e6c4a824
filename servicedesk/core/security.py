from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import HTTPConnection

from servicedesk.config import Settings, get_settings

security_scheme = HTTPBearer(auto_error=False)


class InvalidCredentialsError(Exception):
  """Raised when a bearer token cannot be verified."""


@dataclass(frozen=True)
class Principal:
  """Authenticated caller resolved from token claims."""

  user_id: str
  role: str = "user"


def get_app_settings(connection: HTTPConnection) -> Settings:
  """Resolve the settings the running app was built with."""
  settings = getattr(connection.app.state, "settings", None)
  return settings if settings is not None else get_settings()


def issue_token(settings: Settings, user_id: str, *, role: str = "user", expires_in: datetime.timedelta = datetime.timedelta(hours=8)) -> str:
  """Sign an access token for `user_id`; used by tests and local tooling."""
  now = datetime.datetime.now(datetime.UTC)
  claims = {"sub": user_id, "role": role, "iat": now, "exp": now + expires_in}
  return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> Principal:
  """Verify signature and expiry, then map claims to a Principal."""
  try:
    claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm], options={"require": ["sub", "exp"]})
  except jwt.PyJWTError as exc:
    raise InvalidCredentialsError(str(exc)) from exc

  user_id = claims.get("sub")
  if not isinstance(user_id, str) or not user_id:
    raise InvalidCredentialsError("Token subject is missing")

  role = claims.get("role") or "user"
  return Principal(user_id=user_id, role=str(role))


async def get_current_principal(
  connection: HTTPConnection,
  token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
) -> Principal:
  """Verify the bearer token and return the caller."""
  if token is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})

  try:
    return decode_token(get_app_settings(connection), token.credentials)
  except InvalidCredentialsError as exc:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"}) from exc
