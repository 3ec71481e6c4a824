import logging
from http import HTTPStatus
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from servicedesk.core.security import get_app_settings

logger = logging.getLogger("servicedesk.core.exceptions")


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  # Scalars already encode as JSON.
  if value is None or isinstance(value, bool | int | float | str):
    return value
  # Walk mappings; keys become strings so any hashable key survives encoding.
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  # Sets and tuples go out as plain lists.
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  # Exceptions render as their type, plus the message when there is one.
  if isinstance(value, BaseException):
    return f"{type(value).__name__}: {value}" if str(value) else type(value).__name__
  # Anything else falls back to its string form.
  return str(value)


def _request_id(request: Request) -> str | None:
  # Set by the request context middleware; absent when it is not installed.
  return getattr(request.state, "request_id", None)


def _error_response(status_code: int, detail: Any, request: Request, *, headers: dict[str, str] | None = None) -> JSONResponse:
  """Error body clients read: the detail plus a request id to quote to support."""
  content: dict[str, Any] = {"detail": detail}
  # Only echo the id when one was assigned, so the body shape stays minimal otherwise.
  request_id = _request_id(request)
  if request_id:
    content["requestId"] = request_id
  return JSONResponse(status_code=status_code, content=content, headers=headers)


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    # Drop the submitted value; notification bodies must not reach logs or responses.
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    # The context dict can carry a copy of the input too.
    if isinstance(scrubbed.get("ctx"), dict):
      scrubbed["ctx"] = {key: value for key, value in scrubbed["ctx"].items() if key != "input"}
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Catch unhandled errors without exposing their details."""
  # Full traceback stays server-side; the client only sees a generic message.
  logger.error("Unhandled error request_id=%s path=%s error_type=%s", _request_id(request), request.url.path, type(exc).__name__, exc_info=True)
  return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", request)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Reject malformed bodies and query strings without echoing what was sent."""
  errors = _sanitize_validation_errors(exc.errors())
  # Log the scrubbed list so field names and error types are still searchable.
  logger.warning("Request validation failed request_id=%s %s %s errors=%s", _request_id(request), request.method, request.url.path, errors)
  return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, errors, request)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Keep 4xx details for callers; replace 5xx details with the bare status phrase."""
  if exc.status_code >= 500:
    logger.error("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, _request_id(request), request.url.path, exc.detail)
    # Non-standard 5xx codes have no phrase in HTTPStatus.
    try:
      phrase = HTTPStatus(exc.status_code).phrase
    except ValueError:
      phrase = "Internal Server Error"
    return _error_response(exc.status_code, phrase, request, headers=exc.headers)

  # 4xx noise (401s from expired tokens, 404s) is opt-in.
  if get_app_settings(request).log_http_4xx:
    logger.warning("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, _request_id(request), request.url.path, exc.detail)
  # Headers such as WWW-Authenticate pass through unchanged.
  return _error_response(exc.status_code, exc.detail, request, headers=exc.headers)
