from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime
from typing import TypedDict

from ...exceptions import RetryableInfraError
from ...utils.timezone_utils import TimezoneUtils

__all__ = [
    "BatchNumberGenerator",
    "generate_batch_number",
    "parse_batch_number",
    "validate_batch_number",
]

logger = logging.getLogger(__name__)

BASE36_CHARS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
DEFAULT_PREFIX = "BATCH"
MAX_ATTEMPTS = 5


class ParsedBatchNumber(TypedDict):
    prefix: str | None
    product: str | None
    received: str | None
    suffix: str | None


def _int_to_base36(num: int) -> str:
    if num == 0:
        return "0"

    digits = []
    while num:
        num, remainder = divmod(num, 36)
        digits.append(BASE36_CHARS[remainder])

    return "".join(reversed(digits))


def _generate_suffix() -> str:
    timestamp_component = _int_to_base36(int(time.time() * 1000)).rjust(6, "0")[-4:]
    random_component = _int_to_base36(secrets.randbelow(36**4)).rjust(4, "0")[-4:]
    return f"{timestamp_component}{random_component}".upper()


def generate_batch_number(
    product_id: int,
    received: datetime | None = None,
    *,
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """
    Build a batch number like ``BATCH-00002S-20240105-K3ZQ8F1A``.

    Product and receipt day are readable for staff; the suffix carries the
    millisecond clock plus randomness so concurrent receipts do not collide.
    """
    received = TimezoneUtils.ensure_timezone_aware(received) or TimezoneUtils.utc_now()
    product_component = _int_to_base36(abs(int(product_id or 0))).rjust(6, "0")[-8:]
    return f"{prefix}-{product_component}-{received:%Y%m%d}-{_generate_suffix()}"


def parse_batch_number(batch_number: str) -> ParsedBatchNumber:
    parts = (batch_number or "").split("-")
    if len(parts) != 4:
        return {"prefix": None, "product": None, "received": None, "suffix": None}
    prefix, product, received, suffix = parts
    return {"prefix": prefix, "product": product, "received": received, "suffix": suffix}


def validate_batch_number(batch_number: str) -> bool:
    parsed = parse_batch_number(batch_number)
    if not parsed["prefix"]:
        return False
    return parsed["received"].isdigit() and len(parsed["received"]) == 8 and bool(parsed["suffix"])


class BatchNumberGenerator:
    """Generates batch numbers not yet present in the catalog."""

    def __init__(self, catalog, prefix: str = DEFAULT_PREFIX):
        self.catalog = catalog
        self.prefix = prefix

    def next(self, product_id: int, received: datetime | None = None) -> str:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            candidate = generate_batch_number(product_id, received, prefix=self.prefix)
            if not self.catalog.batch_number_exists(candidate):
                return candidate
            logger.warning("Batch number collision on %s (attempt %s)", candidate, attempt)
        # The unique constraint still guards the insert; this only bounds the search
        raise RetryableInfraError(
            f"Could not generate a unique batch number after {MAX_ATTEMPTS} attempts",
            product_id=product_id,
        )
