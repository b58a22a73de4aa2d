from __future__ import annotations

import logging

from kanban_api.config import Settings

ROOT_LOGGER = "kanban-api"
LOG_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"


def get_logger(component: str | None = None) -> logging.Logger:
  if not component:
    return logging.getLogger(ROOT_LOGGER)
  return logging.getLogger(f"{ROOT_LOGGER}.{component}")


def configure_logging(settings: Settings) -> None:
  root = logging.getLogger(ROOT_LOGGER)
  level = logging.getLevelName((settings.log_level or "INFO").upper())
  if not isinstance(level, int):
    level = logging.INFO
  root.setLevel(level)
  if not any(getattr(h, "_kanban_handler", False) for h in root.handlers):
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._kanban_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
  root.propagate = False
