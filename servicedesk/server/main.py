from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from servicedesk import __version__
from servicedesk.config import Settings, get_settings
from servicedesk.core.database import Database
from servicedesk.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler
from servicedesk.core.lifespan import lifespan
from servicedesk.core.middleware import RequestLoggingMiddleware
from servicedesk.server.hub import PushHub
from servicedesk.server.routes import notifications, realtime


def create_app(settings: Settings | None = None, *, api_prefix: str = "/api", log_dir: Path | None = None) -> FastAPI:
  """Build the notifications service; each app owns its own database and push hub."""
  settings = settings or get_settings()

  app = FastAPI(title="Service Desk Notifications", version=__version__, lifespan=lifespan, debug=settings.debug)
  app.state.settings = settings
  app.state.log_dir = log_dir
  app.state.database = Database(settings.db_dsn, echo=settings.debug)
  app.state.hub = PushHub(app.state.database.session_factory)

  app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["x-request-id"])

  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

  app.add_middleware(RequestLoggingMiddleware)

  @app.get("/health", include_in_schema=False)
  async def health_check() -> dict[str, object]:
    """Return a simple health status with live push connection counts."""
    return {"status": "ok", "version": __version__, "online": app.state.hub.online_counts()}

  app.include_router(notifications.router, prefix=api_prefix, tags=["notifications"])
  app.include_router(realtime.router, tags=["realtime"])
  return app
