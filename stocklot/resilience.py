"""Global resilience and error-handler registration.

Synopsis:
Registers teardown and error handlers for database rollback safety and turns
stock engine errors into JSON responses with stable status codes.

Glossary:
- Resilience handler: Global request teardown/error behavior for known failures.
- Retryable error: A failure the caller may retry; nothing was persisted.
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import DBAPIError, OperationalError

from .exceptions import (
    BatchNotFound,
    ConcurrencyConflict,
    InsufficientStock,
    RetryableInfraError,
    StockEngineError,
)
from .extensions import db

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 2

_STATUS_BY_ERROR = (
    (BatchNotFound, 404),
    (InsufficientStock, 409),
    (ConcurrencyConflict, 409),
    (RetryableInfraError, 503),
)


def status_for_error(error: StockEngineError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return status
    return 400


def _safe_rollback() -> None:
    try:
        db.session.rollback()
    except Exception as exc:  # pragma: no cover - connection already gone
        logger.warning("Session rollback failed during error handling: %s", exc)


def register_resilience_handlers(app) -> None:
    """Install global DB rollback and JSON error handlers."""

    # Flask-SQLAlchemy removes the scoped session when the app context ends
    @app.teardown_request
    def _rollback_on_error(exc):
        if exc is not None:
            _safe_rollback()

    @app.errorhandler(StockEngineError)
    def _stock_error_handler(error: StockEngineError):
        status = status_for_error(error)
        if status >= 500:
            logger.error("Stock engine infrastructure failure: %s", error.message)
        response = jsonify(error.to_dict())
        response.status_code = status
        if error.retryable:
            response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
        return response

    @app.errorhandler(OperationalError)
    @app.errorhandler(DBAPIError)
    def _db_error_handler(error):
        _safe_rollback()
        logger.error("Database error reached the request boundary: %s", error)
        response = jsonify(
            {
                "error": RetryableInfraError.code,
                "message": "Service temporarily unavailable. Please try again shortly.",
                "retryable": True,
            }
        )
        response.status_code = 503
        response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
        return response
