from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from flask import current_app, has_app_context

from ...utils.timezone_utils import TimezoneUtils
from ._types import AllocationStrategy

logger = logging.getLogger(__name__)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass(frozen=True)
class StockSettings:
    """Engine tunables, resolved once from the Flask config."""

    expiring_soon_days: int = 30
    default_shelf_life_days: int = 365
    default_strategy: AllocationStrategy = AllocationStrategy.FIFO_BY_RECEIPT
    skip_expired_batches: bool = False
    lock_timeout_seconds: float = 5.0
    store_timeout_seconds: int = 10
    business_timezone: str = "UTC"
    batch_prefix: str = "BATCH"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "StockSettings":
        raw_strategy = config.get("STOCK_ALLOCATION_STRATEGY", cls.default_strategy.value)
        try:
            strategy = AllocationStrategy(raw_strategy)
        except ValueError:
            logger.warning("Unknown STOCK_ALLOCATION_STRATEGY %r; using fifo_receipt", raw_strategy)
            strategy = AllocationStrategy.FIFO_BY_RECEIPT

        timezone_name = config.get("STOCK_BUSINESS_TIMEZONE", cls.business_timezone)
        if not TimezoneUtils.validate_timezone(timezone_name):
            logger.warning("Unknown STOCK_BUSINESS_TIMEZONE %r; using UTC", timezone_name)
            timezone_name = "UTC"

        return cls(
            expiring_soon_days=int(config.get("STOCK_EXPIRING_SOON_DAYS", cls.expiring_soon_days)),
            default_shelf_life_days=int(
                config.get("STOCK_DEFAULT_SHELF_LIFE_DAYS", cls.default_shelf_life_days)
            ),
            default_strategy=strategy,
            skip_expired_batches=_as_bool(config.get("STOCK_SKIP_EXPIRED_BATCHES", cls.skip_expired_batches)),
            lock_timeout_seconds=float(config.get("STOCK_LOCK_TIMEOUT_SECONDS", cls.lock_timeout_seconds)),
            store_timeout_seconds=int(config.get("STOCK_STORE_TIMEOUT_SECONDS", cls.store_timeout_seconds)),
            business_timezone=timezone_name,
            batch_prefix=str(config.get("STOCK_BATCH_PREFIX", cls.batch_prefix) or cls.batch_prefix),
        )


def current_settings() -> StockSettings:
    """Settings of the active Flask app, or the defaults outside an app context."""
    if has_app_context():
        return StockSettings.from_config(current_app.config)
    return StockSettings()
