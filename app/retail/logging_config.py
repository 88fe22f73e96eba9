"""
Logging setup shared by the web app and the scripts.

One stdout handler (container platforms collect stdout), level from LOG_LEVEL.
Flask's app.logger is the "app.retail" logger, so it shares the handler.
"""
from __future__ import annotations

import logging
import sys

from flask import Flask

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    logger = logging.getLogger(app.import_name)
    logger.setLevel(level)

    # Install before app.logger is first touched, otherwise Flask adds its own stderr handler.
    if not any(getattr(h, "_retail_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        handler._retail_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
