import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("entrypoint")


def main() -> None:
  """Launch the notifications service under uvicorn."""
  port = os.getenv("SERVICEDESK_PORT", "5000")
  logger.info("Starting notifications service on port %s", port)
  # Replace the current process so uvicorn receives signals directly.
  args = ["uvicorn", "servicedesk.server.main:create_app", "--factory", "--host", "0.0.0.0", "--port", port, "--no-server-header"]
  os.execvp("uvicorn", args)


if __name__ == "__main__":
  main()
