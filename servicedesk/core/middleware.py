import logging
import re
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("servicedesk.core.middleware")

_TOKEN_PARAM = re.compile(r"(^|&)(token|access_token)=[^&]*")
_REQUEST_ID_HEADER = b"x-request-id"
_MAX_REQUEST_ID_LENGTH = 64


def _loggable_target(scope: Scope) -> str:
  """Path plus query string with credentials masked."""
  path = scope.get("path", "")
  query = scope.get("query_string", b"").decode("latin-1")
  if not query:
    return path
  masked = _TOKEN_PARAM.sub(r"\1\2=***", query)
  return f"{path}?{masked}"


def _incoming_request_id(scope: Scope) -> str | None:
  for key, value in scope.get("headers", []):
    if key.lower() == _REQUEST_ID_HEADER:
      candidate = value.decode("latin-1").strip()
      if candidate and len(candidate) <= _MAX_REQUEST_ID_LENGTH and candidate.isprintable():
        return candidate
  return None


class RequestLoggingMiddleware:
  """Tag every HTTP request and push-channel session with an id and log its outcome."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] not in {"http", "websocket"}:
      await self.app(scope, receive, send)
      return

    # Reuse a caller-supplied id so client and server logs line up.
    request_id = _incoming_request_id(scope) or str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id
    target = _loggable_target(scope)
    started = time.perf_counter()

    if scope["type"] == "websocket":
      logger.info("Push channel opening request_id=%s %s", request_id, target)
      close_code: int | None = None

      async def send_ws(message: dict[str, Any]) -> None:
        nonlocal close_code
        if message.get("type") == "websocket.close":
          close_code = message.get("code", 1000)
        await send(message)

      try:
        await self.app(scope, receive, send_ws)
      finally:
        elapsed = time.perf_counter() - started
        logger.info("Push channel closed request_id=%s code=%s after %.1fs", request_id, close_code, elapsed)
      return

    method = scope.get("method", "UNKNOWN")
    logger.info("Incoming request request_id=%s %s %s", request_id, method, target)
    status_code = 0

    async def send_http(message: dict[str, Any]) -> None:
      nonlocal status_code
      if message.get("type") == "http.response.start":
        status_code = message.get("status", 0)
        headers = MutableHeaders(scope=message)
        if "x-request-id" not in headers:
          headers["x-request-id"] = request_id
      await send(message)

    await self.app(scope, receive, send_http)
    elapsed_ms = (time.perf_counter() - started) * 1000
    level = logging.WARNING if status_code >= 500 else logging.INFO
    logger.log(level, "Response request_id=%s %s %s status=%s (took %.2fms)", request_id, method, target, status_code, elapsed_ms)
