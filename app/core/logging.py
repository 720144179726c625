"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.config import Settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_MARKER = "_docsynth_handler"


def _has_handler(target: logging.Logger, kind: str) -> bool:
  return any(getattr(handler, _HANDLER_MARKER, None) == kind for handler in target.handlers)


def _initialize_logging(settings: Settings) -> None:
  """Attach console and rotating file handlers to the application logger."""
  app_logger = logging.getLogger("app")
  app_logger.setLevel(logging.DEBUG if settings.debug else logging.INFO)
  formatter = logging.Formatter(_LOG_FORMAT)

  # Uvicorn may reconfigure logging after import; only add handlers once.
  if not _has_handler(app_logger, "console"):
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    setattr(console_handler, _HANDLER_MARKER, "console")
    app_logger.addHandler(console_handler)

  if not _has_handler(app_logger, "file"):
    log_dir = Path(settings.log_dir)
    try:
      log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
      app_logger.warning("Log directory %s unavailable; file logging disabled.", log_dir, exc_info=True)
      return

    file_handler = RotatingFileHandler(log_dir / "docsynth.log", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count, encoding="utf-8")
    file_handler.setFormatter(formatter)
    setattr(file_handler, _HANDLER_MARKER, "file")
    app_logger.addHandler(file_handler)

  # Keep records out of the root logger so uvicorn does not print them twice.
  app_logger.propagate = False
