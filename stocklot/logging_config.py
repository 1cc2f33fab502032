from __future__ import annotations

import logging
from typing import Iterable

from flask import Flask

DEV_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
PROD_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
NOISY_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic.runtime.migration")


def configure_logging(app: Flask) -> None:
    level = _coerce_level(app.config.get("LOG_LEVEL", "DEBUG" if app.debug else "INFO"))
    root = logging.getLogger()
    root.setLevel(level)
    app.logger.setLevel(level)
    logging.getLogger("stocklot").setLevel(level)

    if not root.handlers:
        root.addHandler(logging.StreamHandler())

    if level > logging.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    is_production = app.config.get("ENV") == "production" and not app.debug
    formatter = logging.Formatter(PROD_FORMAT if is_production else DEV_FORMAT)
    _apply_formatter(root.handlers, formatter)
    _apply_formatter(app.logger.handlers, formatter)


def _apply_formatter(handlers: Iterable[logging.Handler], formatter: logging.Formatter) -> None:
    for handler in handlers:
        handler.setFormatter(formatter)


def _coerce_level(raw_level) -> int:
    if isinstance(raw_level, int):
        return raw_level
    if isinstance(raw_level, str):
        candidate = raw_level.strip().upper()
        return getattr(logging, candidate, logging.INFO)
    return logging.INFO
