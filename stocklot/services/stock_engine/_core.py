"""
Stock mutation service

The single entry point for every change to batch quantities. Each public
operation validates its input, takes the keyed locks for the (product,
warehouse) pairs it touches, and commits batch writes, movement rows and
warehouse counters in one transaction.
"""

import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Iterable, List, Optional, Sequence

from flask import current_app, has_app_context

from ...exceptions import InvalidArgument, InvalidTransfer
from ...extensions import db
from ...models import Batch, BatchSource, BatchStatus, MovementType
from ...utils.timezone_utils import TimezoneUtils
from ._allocator import FIFOAllocator, validate_quantity
from ._batch_numbers import BatchNumberGenerator
from ._catalog import SqlBatchCatalog
from ._expiry import classify
from ._locks import KeyedLockRegistry, default_lock_registry
from ._settings import StockSettings, current_settings
from ._transaction import stock_transaction
from ._types import (
    AdjustmentKind,
    AllocationLine,
    AllocationRequest,
    AllocationResult,
    AllocationStrategy,
    CreatedBatch,
    FreshnessState,
    MutationResult,
    SaleLine,
    TransferResult,
    UtilizationSnapshot,
    to_money,
)
from ._utilization import WarehouseUtilizationTracker

logger = logging.getLogger(__name__)

EXTENSION_KEY = "stock_engine"

_MOVEMENT_FOR_KIND = {
    AdjustmentKind.DECREASE: MovementType.DECREASE,
    AdjustmentKind.EXPIRED: MovementType.EXPIRED,
    AdjustmentKind.DAMAGED: MovementType.DAMAGED,
}


def init_stock_engine(app) -> None:
    """Attach the process-wide lock registry to ``app``."""
    app.extensions[EXTENSION_KEY] = KeyedLockRegistry()


def _app_lock_registry() -> KeyedLockRegistry:
    if has_app_context():
        registry = current_app.extensions.get(EXTENSION_KEY)
        if registry is not None:
            return registry
    return default_lock_registry


def _require_reason(reason) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise InvalidArgument("A non-empty reason is required")
    return reason.strip()


def _coerce_enum(enum_cls, value, label):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidArgument(f"Unknown {label} {value!r}; expected one of: {allowed}") from None


def _as_utc(value: datetime) -> datetime:
    return TimezoneUtils.ensure_timezone_aware(value).astimezone(dt_timezone.utc)


class StockMutationService:
    """Orchestrates increases, deductions, write-offs and transfers."""

    def __init__(self, catalog=None, *, settings: Optional[StockSettings] = None,
                 lock_registry: Optional[KeyedLockRegistry] = None):
        self.catalog = catalog or SqlBatchCatalog(db.session)
        self.session = getattr(self.catalog, "session", None) or db.session
        self.settings = settings or current_settings()
        self.locks = lock_registry if lock_registry is not None else _app_lock_registry()
        self.allocator = FIFOAllocator(
            self.catalog,
            expiring_soon_days=self.settings.expiring_soon_days,
            business_timezone=self.settings.business_timezone,
        )
        self.utilization = WarehouseUtilizationTracker(self.catalog)
        self.batch_numbers = BatchNumberGenerator(self.catalog, prefix=self.settings.batch_prefix)

    # ------------------------------------------------------------------ helpers

    def _transaction(self, keys, operation):
        return stock_transaction(
            self.session,
            self.locks,
            keys,
            lock_timeout=self.settings.lock_timeout_seconds,
            store_timeout=self.settings.store_timeout_seconds,
            operation=operation,
        )

    def _strategy(self, strategy) -> AllocationStrategy:
        if strategy is None:
            return self.settings.default_strategy
        return _coerce_enum(AllocationStrategy, strategy, "allocation strategy")

    def _require_product(self, product_id):
        product = self.catalog.get_product(product_id)
        if product is None:
            raise InvalidArgument(f"Product {product_id} not found", product_id=product_id)
        return product

    def _require_warehouse(self, warehouse_id):
        warehouse = self.catalog.get_warehouse(warehouse_id)
        if warehouse is None:
            raise InvalidArgument(f"Warehouse {warehouse_id} not found", warehouse_id=warehouse_id)
        return warehouse

    def _resolve_expiry(self, product, now, expiry_date, shelf_life_days):
        if expiry_date is not None:
            if not isinstance(expiry_date, datetime):
                # A bare calendar date expires at the start of that business day
                return TimezoneUtils.start_of_business_day(expiry_date, self.settings.business_timezone)
            return _as_utc(expiry_date)
        if shelf_life_days is not None:
            if isinstance(shelf_life_days, bool) or not isinstance(shelf_life_days, int) or shelf_life_days <= 0:
                raise InvalidArgument(
                    f"shelf_life_days must be a positive integer, got {shelf_life_days!r}",
                    shelf_life_days=shelf_life_days,
                )
            days = shelf_life_days
        else:
            days = product.shelf_life_days or self.settings.default_shelf_life_days
        return now + timedelta(days=days)

    @staticmethod
    def _created(batch) -> CreatedBatch:
        return CreatedBatch(
            batch_id=batch.id,
            batch_number=batch.batch_number,
            warehouse_id=batch.warehouse_id,
            quantity=batch.original_quantity,
            unit_cost=to_money(batch.unit_cost),
            received_date=batch.received_date,
            expiry_date=batch.expiry_date,
            source_batch_id=batch.source_batch_id,
        )

    def _receive(self, product, warehouse_id, quantity, unit_cost, reason, *, expiry_date,
                 shelf_life_days, reference_id, source_type) -> MutationResult:
        now = TimezoneUtils.utc_now()
        batch = Batch(
            product_id=product.id,
            warehouse_id=warehouse_id,
            batch_number=self.batch_numbers.next(product.id, now),
            quantity_remaining=quantity,
            original_quantity=quantity,
            unit_cost=unit_cost,
            received_date=now,
            expiry_date=self._resolve_expiry(product, now, expiry_date, shelf_life_days),
            status=BatchStatus.ACTIVE,
            source_type=source_type,
            reason=reason,
            reference_id=reference_id,
        )
        self.catalog.insert_batch(batch)
        self.catalog.record_movement(
            product_id=product.id,
            warehouse_id=warehouse_id,
            batch_id=batch.id,
            movement_type=MovementType.RECEIPT,
            quantity=quantity,
            unit_cost=unit_cost,
            reason=reason,
            reference_id=reference_id,
        )
        snapshot = self.utilization.adjust(warehouse_id, quantity)
        return MutationResult(
            kind=AdjustmentKind.INCREASE,
            product_id=product.id,
            warehouse_id=warehouse_id,
            quantity=quantity,
            utilization=snapshot,
            created_batches=[self._created(batch)],
            reference_id=reference_id,
        )

    def _deduct(self, kind, product_id, warehouse_id, quantity, reason, *, strategy,
                allow_partial, reference_id) -> MutationResult:
        now = TimezoneUtils.utc_now()
        # Writing stock off as expired must be able to reach expired batches
        skip_expired = self.settings.skip_expired_batches and kind is not AdjustmentKind.EXPIRED
        allocation = self.allocator.fulfil(
            AllocationRequest(product_id, warehouse_id, quantity, strategy, allow_partial),
            depleted_status=kind.depleted_status,
            as_of=now,
            skip_expired=skip_expired,
        )
        for line in allocation.lines:
            self.catalog.record_movement(
                product_id=product_id,
                warehouse_id=warehouse_id,
                batch_id=line.batch_id,
                movement_type=_MOVEMENT_FOR_KIND[kind],
                quantity=-line.quantity_deducted,
                unit_cost=line.unit_cost,
                reason=reason,
                reference_id=reference_id,
            )
        snapshot = self.utilization.adjust(warehouse_id, -allocation.total_deducted)
        return MutationResult(
            kind=kind,
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity=allocation.total_deducted,
            utilization=snapshot,
            allocation=allocation,
            reference_id=reference_id,
        )

    def _write_off(self, batch, status: BatchStatus, reason, reference_id) -> MutationResult:
        quantity = batch.quantity_remaining
        unit_cost = to_money(batch.unit_cost)
        self.catalog.update_batch_quantity(batch.id, 0, status)
        self.catalog.record_movement(
            product_id=batch.product_id,
            warehouse_id=batch.warehouse_id,
            batch_id=batch.id,
            movement_type=MovementType(status.value),
            quantity=-quantity,
            unit_cost=unit_cost,
            reason=reason,
            reference_id=reference_id,
        )
        snapshot = self.utilization.adjust(batch.warehouse_id, -quantity)
        allocation = AllocationResult(
            product_id=batch.product_id,
            warehouse_id=batch.warehouse_id,
            requested=quantity,
            strategy=self.settings.default_strategy,
            lines=[
                AllocationLine(
                    batch_id=batch.id,
                    batch_number=batch.batch_number,
                    quantity_deducted=quantity,
                    unit_cost=unit_cost,
                    remaining_after=0,
                    status_after=status,
                )
            ],
        )
        return MutationResult(
            kind=AdjustmentKind(status.value),
            product_id=batch.product_id,
            warehouse_id=batch.warehouse_id,
            quantity=quantity,
            utilization=snapshot,
            allocation=allocation,
            reference_id=reference_id,
        )

    # ------------------------------------------------------------ public API

    def adjust_stock(
        self,
        kind,
        product_id: int,
        warehouse_id: int,
        quantity: int,
        reason: str,
        unit_cost=None,
        *,
        expiry_date: Optional[datetime] = None,
        shelf_life_days: Optional[int] = None,
        reference_id: Optional[str] = None,
        strategy=None,
        allow_partial: bool = False,
        source_type=BatchSource.MANUAL,
    ) -> MutationResult:
        """
        Increase stock with a new batch, or deduct it FIFO.

        ``increase`` needs ``unit_cost`` and creates one ACTIVE batch; the
        expiry comes from ``expiry_date``, else ``shelf_life_days``, else the
        product's shelf life, else the configured default.
        ``decrease``/``expired``/``damaged`` deduct oldest-first; batches drained
        by an expired/damaged write-off end in that status instead of DEPLETED.
        """
        kind = _coerce_enum(AdjustmentKind, kind, "adjustment kind")
        validate_quantity(quantity)
        reason = _require_reason(reason)

        if kind is AdjustmentKind.INCREASE:
            if unit_cost is None:
                raise InvalidArgument("unit_cost is required when increasing stock")
            try:
                unit_cost = to_money(unit_cost)
            except ArithmeticError:
                raise InvalidArgument(f"unit_cost {unit_cost!r} is not a number") from None
            if not unit_cost.is_finite():
                raise InvalidArgument(f"unit_cost {unit_cost} is not a finite amount", unit_cost=str(unit_cost))
            if unit_cost < 0:
                raise InvalidArgument("unit_cost cannot be negative", unit_cost=str(unit_cost))
            source_type = _coerce_enum(BatchSource, source_type, "batch source")
        else:
            strategy = self._strategy(strategy)

        with self._transaction([(product_id, warehouse_id)], f"adjust_stock[{kind.value}]"):
            product = self._require_product(product_id)
            self._require_warehouse(warehouse_id)
            if kind is AdjustmentKind.INCREASE:
                result = self._receive(
                    product,
                    warehouse_id,
                    quantity,
                    unit_cost,
                    reason,
                    expiry_date=expiry_date,
                    shelf_life_days=shelf_life_days,
                    reference_id=reference_id,
                    source_type=source_type,
                )
            else:
                result = self._deduct(
                    kind,
                    product_id,
                    warehouse_id,
                    quantity,
                    reason,
                    strategy=strategy,
                    allow_partial=allow_partial,
                    reference_id=reference_id,
                )

        logger.info(
            f"STOCK {kind.value.upper()}: product {product_id} warehouse {warehouse_id} "
            f"qty {result.quantity} (requested {quantity}), utilization "
            f"{result.utilization.current_utilization}/{result.utilization.capacity}, reason={reason!r}"
        )
        return result

    def transfer_stock(
        self,
        from_warehouse_id: int,
        to_warehouse_id: int,
        product_id: int,
        quantity: int,
        reason: str,
        *,
        reference_id: Optional[str] = None,
        strategy=None,
    ) -> TransferResult:
        """
        Move stock between warehouses.

        Source batches are deducted FIFO and each deducted slice is mirrored as
        a new destination batch carrying the source cost and dates, so each
        warehouse keeps its own cost-basis history.
        """
        if from_warehouse_id == to_warehouse_id:
            raise InvalidTransfer(
                "Source and destination warehouse must differ",
                warehouse_id=from_warehouse_id,
            )
        validate_quantity(quantity)
        reason = _require_reason(reason)
        strategy = self._strategy(strategy)

        keys = [(product_id, from_warehouse_id), (product_id, to_warehouse_id)]
        with self._transaction(keys, "transfer_stock"):
            self._require_product(product_id)
            self._require_warehouse(from_warehouse_id)
            self._require_warehouse(to_warehouse_id)

            now = TimezoneUtils.utc_now()
            allocation = self.allocator.fulfil(
                AllocationRequest(product_id, from_warehouse_id, quantity, strategy),
                as_of=now,
                skip_expired=self.settings.skip_expired_batches,
            )

            mirrored: List[CreatedBatch] = []
            for line in allocation.lines:
                source = self.catalog.get_batch(line.batch_id)
                mirror = Batch(
                    product_id=product_id,
                    warehouse_id=to_warehouse_id,
                    batch_number=self.batch_numbers.next(product_id, now),
                    quantity_remaining=line.quantity_deducted,
                    original_quantity=line.quantity_deducted,
                    unit_cost=line.unit_cost,
                    received_date=TimezoneUtils.ensure_timezone_aware(source.received_date),
                    expiry_date=TimezoneUtils.ensure_timezone_aware(source.expiry_date),
                    status=BatchStatus.ACTIVE,
                    source_type=BatchSource.TRANSFER_IN,
                    source_batch_id=source.id,
                    reason=reason,
                    reference_id=reference_id,
                )
                self.catalog.insert_batch(mirror)
                self.catalog.record_movement(
                    product_id=product_id,
                    warehouse_id=from_warehouse_id,
                    batch_id=source.id,
                    movement_type=MovementType.TRANSFER_OUT,
                    quantity=-line.quantity_deducted,
                    unit_cost=line.unit_cost,
                    reason=reason,
                    reference_id=reference_id,
                )
                self.catalog.record_movement(
                    product_id=product_id,
                    warehouse_id=to_warehouse_id,
                    batch_id=mirror.id,
                    movement_type=MovementType.TRANSFER_IN,
                    quantity=line.quantity_deducted,
                    unit_cost=line.unit_cost,
                    reason=reason,
                    reference_id=reference_id,
                )
                mirrored.append(self._created(mirror))

            source_snapshot = self.utilization.adjust(from_warehouse_id, -allocation.total_deducted)
            destination_snapshot = self.utilization.adjust(to_warehouse_id, allocation.total_deducted)
            result = TransferResult(
                product_id=product_id,
                quantity=allocation.total_deducted,
                allocation=allocation,
                source=source_snapshot,
                destination=destination_snapshot,
                mirrored_batches=mirrored,
                reference_id=reference_id,
            )

        logger.info(
            f"STOCK TRANSFER: product {product_id} qty {quantity} "
            f"warehouse {from_warehouse_id} -> {to_warehouse_id} across {len(mirrored)} batches"
        )
        return result

    def deduct_for_sale(
        self,
        warehouse_id: int,
        lines: Iterable,
        reference_id: Optional[str] = None,
        reason: str = "sale",
        *,
        strategy=None,
    ) -> List[MutationResult]:
        """
        Deduct every line of a sale in one transaction.

        Lines are ``SaleLine`` objects, ``(product_id, quantity)`` pairs or
        dicts with those keys. Repeated products are merged. If any line is
        short, no line is applied.
        """
        reason = _require_reason(reason)
        strategy = self._strategy(strategy)
        merged = {}
        for line in lines or ():
            if isinstance(line, SaleLine):
                product_id, quantity = line.product_id, line.quantity
            elif isinstance(line, dict):
                product_id, quantity = line.get("product_id"), line.get("quantity")
            else:
                try:
                    product_id, quantity = line
                except (TypeError, ValueError):
                    raise InvalidArgument(f"Sale line {line!r} is not a (product_id, quantity) pair") from None
            if product_id is None:
                raise InvalidArgument("Every sale line needs a product_id")
            validate_quantity(quantity)
            merged[product_id] = merged.get(product_id, 0) + quantity
        if not merged:
            raise InvalidArgument("A sale needs at least one line")

        keys = [(product_id, warehouse_id) for product_id in merged]
        results: List[MutationResult] = []
        with self._transaction(keys, "deduct_for_sale"):
            self._require_warehouse(warehouse_id)
            for product_id, quantity in merged.items():
                self._require_product(product_id)
                results.append(
                    self._deduct(
                        AdjustmentKind.DECREASE,
                        product_id,
                        warehouse_id,
                        quantity,
                        reason,
                        strategy=strategy,
                        allow_partial=False,
                        reference_id=reference_id,
                    )
                )

        total_cost = sum((result.allocation.total_cost for result in results), to_money(0))
        logger.info(
            f"STOCK SALE: warehouse {warehouse_id} ref={reference_id} {len(results)} lines, cost of goods {total_cost}"
        )
        return results

    def mark_batch(self, batch_id: int, status, reason: str, *,
                   reference_id: Optional[str] = None) -> MutationResult:
        """Write off everything left in one ACTIVE batch as EXPIRED or DAMAGED."""
        status = _coerce_enum(BatchStatus, status, "batch status")
        if status not in (BatchStatus.EXPIRED, BatchStatus.DAMAGED):
            raise InvalidArgument(
                f"Batches can only be marked expired or damaged, not {status.value}",
                batch_id=batch_id,
            )
        reason = _require_reason(reason)

        batch = self.catalog.get_batch(batch_id)
        key = (batch.product_id, batch.warehouse_id)
        with self._transaction([key], "mark_batch"):
            batch = self.catalog.get_batch(batch_id, for_update=True)
            if batch.is_terminal:
                raise InvalidArgument(
                    f"Batch {batch.batch_number} is already {batch.status.value}",
                    batch_id=batch_id,
                    status=batch.status.value,
                )
            result = self._write_off(batch, status, reason, reference_id)

        logger.info(f"STOCK MARK: batch {batch_id} -> {status.value}, {result.quantity} units written off")
        return result

    def sweep_expired(self, as_of: Optional[datetime] = None, *,
                      reason: str = "expiry sweep") -> List[MutationResult]:
        """Mark every ACTIVE batch past its expiry day as EXPIRED, in one transaction."""
        reason = _require_reason(reason)
        as_of = TimezoneUtils.ensure_timezone_aware(as_of) or TimezoneUtils.utc_now()
        tz_name = self.settings.business_timezone
        # Anything expiring before the start of today's business day is past its expiry day
        cutoff = TimezoneUtils.start_of_business_day(as_of, tz_name)

        candidates = self.catalog.list_expired_candidates(cutoff)
        if not candidates:
            logger.info("EXPIRY SWEEP: nothing to expire as of %s", as_of.isoformat())
            return []

        batch_ids = [batch.id for batch in candidates]
        keys = {(batch.product_id, batch.warehouse_id) for batch in candidates}
        results: List[MutationResult] = []
        with self._transaction(keys, "sweep_expired"):
            for batch_id in batch_ids:
                batch = self.catalog.get_batch(batch_id, for_update=True)
                # Another operation may have drained it between listing and locking
                if batch.is_terminal:
                    continue
                state = classify(batch, as_of, self.settings.expiring_soon_days, tz_name)
                if state is not FreshnessState.EXPIRED:
                    continue
                results.append(self._write_off(batch, BatchStatus.EXPIRED, reason, None))

        logger.info(
            f"EXPIRY SWEEP: expired {len(results)} batches "
            f"({sum(result.quantity for result in results)} units) as of {as_of.isoformat()}"
        )
        return results

    def preview_allocation(self, product_id: int, warehouse_id: int, quantity: int, strategy=None, *,
                           as_of: Optional[datetime] = None,
                           skip_expired: Optional[bool] = None) -> AllocationResult:
        """Plan a deduction without locks or writes; the shortfall is reported, not raised."""
        if skip_expired is None:
            skip_expired = self.settings.skip_expired_batches
        return self.allocator.plan(
            product_id,
            warehouse_id,
            quantity,
            self._strategy(strategy),
            as_of=TimezoneUtils.ensure_timezone_aware(as_of) or TimezoneUtils.utc_now(),
            skip_expired=skip_expired,
            for_update=False,
        )

    def utilization_snapshot(self, warehouse_id: int) -> UtilizationSnapshot:
        return self.utilization.snapshot(warehouse_id)

    def recompute_utilization(self, warehouse_id: int) -> UtilizationSnapshot:
        with self._transaction((), "recompute_utilization"):
            snapshot = self.utilization.recompute(warehouse_id)
        return snapshot

    def recompute_all_utilization(self, warehouse_ids: Optional[Sequence[int]] = None) -> List[UtilizationSnapshot]:
        with self._transaction((), "recompute_all_utilization"):
            ids = list(warehouse_ids) if warehouse_ids is not None else self.catalog.list_warehouse_ids()
            snapshots = [self.utilization.recompute(warehouse_id) for warehouse_id in ids]
        repaired = [snapshot for snapshot in snapshots if snapshot.drift]
        logger.info(f"UTILIZATION: recomputed {len(snapshots)} warehouses, {len(repaired)} had drifted")
        return snapshots
