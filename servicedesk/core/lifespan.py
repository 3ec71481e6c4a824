import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from servicedesk.core.logging import initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the schema once uvicorn starts; release the engine on shutdown."""
  settings = app.state.settings
  database = app.state.database
  logger = logging.getLogger("servicedesk.core.lifespan")

  try:
    initialize_logging(settings, log_dir=getattr(app.state, "log_dir", None))
    logger.info("Startup complete - logging verified.")
  except RuntimeError:
    # Keep serving with whatever handlers exist; file logging is best effort.
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  await database.create_all()
  logger.info("Database ready dsn_driver=%s", database.engine.url.drivername)

  try:
    yield
  finally:
    await database.dispose()
    logger.info("Shutdown complete.")
