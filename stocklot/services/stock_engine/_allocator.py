"""
FIFO allocation

Decides which batches satisfy a deduction and in what quantities, then writes
the per-batch results through the catalog. Planning and applying are separate
steps so that nothing is written when the request cannot be met.
"""

import logging
from datetime import datetime
from typing import List, Optional

from ...exceptions import InsufficientStock, InvalidQuantity
from ...models import Batch, BatchStatus
from ...utils.timezone_utils import TimezoneUtils
from ._expiry import DEFAULT_EXPIRING_SOON_DAYS, classify
from ._types import (
    AllocationLine,
    AllocationRequest,
    AllocationResult,
    AllocationStrategy,
    FreshnessState,
    to_money,
)

logger = logging.getLogger(__name__)


def validate_quantity(quantity) -> int:
    """Return ``quantity`` when it is a positive integer, else raise InvalidQuantity."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(f"Quantity must be a positive integer, got {quantity!r}", quantity=quantity)
    if quantity <= 0:
        raise InvalidQuantity(f"Quantity must be greater than zero, got {quantity}", quantity=quantity)
    return quantity


def _expiry_sort_key(batch: Batch):
    expiry = TimezoneUtils.ensure_timezone_aware(batch.expiry_date)
    received = TimezoneUtils.ensure_timezone_aware(batch.received_date)
    # Nulls last: the boolean sorts batches without an expiry after dated ones
    return (expiry is None, expiry or received, received, batch.batch_number)


class FIFOAllocator:
    """Selects and deducts stock oldest-first for one (product, warehouse) key."""

    def __init__(self, catalog, *, expiring_soon_days: int = DEFAULT_EXPIRING_SOON_DAYS,
                 business_timezone: Optional[str] = None):
        self.catalog = catalog
        self.expiring_soon_days = expiring_soon_days
        self.business_timezone = business_timezone

    def candidates(
        self,
        product_id: int,
        warehouse_id: int,
        strategy: AllocationStrategy = AllocationStrategy.FIFO_BY_RECEIPT,
        *,
        as_of: Optional[datetime] = None,
        skip_expired: bool = False,
        for_update: bool = True,
    ) -> List[Batch]:
        """Eligible ACTIVE batches in consumption order."""
        strategy = AllocationStrategy(strategy)
        batches = self.catalog.list_active_batches(product_id, warehouse_id, for_update=for_update)

        if skip_expired:
            as_of = as_of or TimezoneUtils.utc_now()
            batches = [
                batch for batch in batches
                if classify(batch, as_of, self.expiring_soon_days, self.business_timezone)
                is not FreshnessState.EXPIRED
            ]

        if strategy is AllocationStrategy.FIFO_BY_EXPIRY:
            batches = sorted(batches, key=_expiry_sort_key)

        return batches

    def plan(
        self,
        product_id: int,
        warehouse_id: int,
        quantity: int,
        strategy: AllocationStrategy = AllocationStrategy.FIFO_BY_RECEIPT,
        *,
        depleted_status: BatchStatus = BatchStatus.DEPLETED,
        as_of: Optional[datetime] = None,
        skip_expired: bool = False,
        for_update: bool = False,
    ) -> AllocationResult:
        """Compute the allocation without writing anything.

        The returned result always carries the shortfall; deciding whether a
        shortfall is acceptable is left to ``allocate`` or the caller.
        """
        validate_quantity(quantity)
        strategy = AllocationStrategy(strategy)
        batches = self.candidates(
            product_id,
            warehouse_id,
            strategy,
            as_of=as_of,
            skip_expired=skip_expired,
            for_update=for_update,
        )

        result = AllocationResult(
            product_id=product_id,
            warehouse_id=warehouse_id,
            requested=quantity,
            strategy=strategy,
        )
        needed = quantity
        for batch in batches:
            if needed <= 0:
                break
            take = min(needed, batch.quantity_remaining)
            if take <= 0:
                continue
            remaining_after = batch.quantity_remaining - take
            result.lines.append(
                AllocationLine(
                    batch_id=batch.id,
                    batch_number=batch.batch_number,
                    quantity_deducted=take,
                    unit_cost=to_money(batch.unit_cost),
                    remaining_after=remaining_after,
                    status_after=depleted_status if remaining_after == 0 else BatchStatus.ACTIVE,
                )
            )
            needed -= take

        result.shortfall = needed
        return result

    def allocate(
        self,
        product_id: int,
        warehouse_id: int,
        quantity: int,
        strategy: AllocationStrategy = AllocationStrategy.FIFO_BY_RECEIPT,
        *,
        allow_partial: bool = False,
        depleted_status: BatchStatus = BatchStatus.DEPLETED,
        as_of: Optional[datetime] = None,
        skip_expired: bool = False,
    ) -> AllocationResult:
        """Deduct ``quantity`` from the key's batches inside the caller's transaction.

        All-or-nothing unless ``allow_partial``: a shortfall raises
        InsufficientStock before any batch is touched.
        """
        result = self.plan(
            product_id,
            warehouse_id,
            quantity,
            strategy,
            depleted_status=depleted_status,
            as_of=as_of,
            skip_expired=skip_expired,
            for_update=True,
        )

        if result.shortfall and not allow_partial:
            logger.warning(
                "FIFO: insufficient stock for product %s in warehouse %s (requested %s, available %s)",
                product_id, warehouse_id, quantity, result.total_deducted,
            )
            raise InsufficientStock(product_id, warehouse_id, quantity, result.total_deducted)

        for line in result.lines:
            self.catalog.update_batch_quantity(line.batch_id, line.remaining_after, line.status_after)

        logger.debug(f"FIFO: allocated {result.total_deducted}/{quantity} across {len(result.lines)} batches "
                     f"for product {product_id} in warehouse {warehouse_id}")
        return result

    def fulfil(self, request: AllocationRequest, **options) -> AllocationResult:
        """Apply an AllocationRequest; ``options`` are passed through to ``allocate``."""
        return self.allocate(
            request.product_id,
            request.warehouse_id,
            request.quantity,
            request.strategy,
            allow_partial=request.allow_partial,
            **options,
        )
