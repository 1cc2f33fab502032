"""Error kinds raised by the stock engine.

Validation and business errors are final: the engine never retries them.
``RetryableInfraError`` is the only kind a caller should retry (with backoff);
the engine guarantees no partial mutation survives a failed operation.
"""

from __future__ import annotations

from typing import Any


class StockEngineError(Exception):
    """Base class for every error the stock engine raises on purpose."""

    code = "stock_engine_error"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload = {"error": self.code, "message": self.message, "retryable": self.retryable}
        payload.update(self.details)
        return payload


class InvalidQuantity(StockEngineError):
    code = "invalid_quantity"


class InvalidArgument(StockEngineError):
    code = "invalid_argument"


class InvalidTransfer(StockEngineError):
    code = "invalid_transfer"


class BatchNotFound(StockEngineError):
    code = "batch_not_found"

    def __init__(self, batch_id):
        super().__init__(f"Batch {batch_id} not found", batch_id=batch_id)
        self.batch_id = batch_id


class InsufficientStock(StockEngineError):
    """Available ACTIVE quantity is below the request under all-or-nothing policy."""

    code = "insufficient_stock"

    def __init__(self, product_id, warehouse_id, requested: int, available: int):
        shortfall = requested - available
        super().__init__(
            f"Insufficient stock for product {product_id} in warehouse {warehouse_id}: "
            f"need {requested}, have {available}",
            product_id=product_id,
            warehouse_id=warehouse_id,
            requested=requested,
            available=available,
            shortfall=shortfall,
        )
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.requested = requested
        self.available = available
        self.shortfall = shortfall


class ConcurrencyConflict(StockEngineError):
    code = "concurrency_conflict"


class RetryableInfraError(StockEngineError):
    """The data store was unavailable or timed out; nothing was persisted."""

    code = "retryable_infra_error"
    retryable = True
