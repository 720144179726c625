import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("entrypoint")


def main() -> None:
  """Launch the service while keeping migrations in the deploy pipeline."""
  # Migrations run in a dedicated deploy step (alembic upgrade head).
  port = os.getenv("PORT", "8080")
  logger.info("Starting docsynth on port %s (run alembic upgrade head in the deploy pipeline)...", port)
  # Replace the current process so uvicorn receives SIGTERM directly.
  os.execvp("uvicorn", ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", port, "--no-server-header"])


if __name__ == "__main__":
  main()
