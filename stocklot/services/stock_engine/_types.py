"""
Type definitions for the stock engine

Requests, allocation breakdowns and mutation results handed back to callers.
The per-batch (batch_id, quantity_deducted, unit_cost) lines are what upstream
accounting uses for cost of goods sold, so every result keeps them.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ...models import BatchStatus
from ...utils.timezone_utils import TimezoneUtils

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce a cost to a 2-decimal Decimal."""
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class AdjustmentKind(str, Enum):
    """Kinds of manual/purchase stock adjustments"""
    INCREASE = "increase"
    DECREASE = "decrease"
    EXPIRED = "expired"
    DAMAGED = "damaged"

    @property
    def depleted_status(self) -> BatchStatus:
        """Status a batch drained by this kind of deduction ends in."""
        if self is AdjustmentKind.EXPIRED:
            return BatchStatus.EXPIRED
        if self is AdjustmentKind.DAMAGED:
            return BatchStatus.DAMAGED
        return BatchStatus.DEPLETED


class AllocationStrategy(str, Enum):
    """Order in which candidate batches are consumed"""
    FIFO_BY_RECEIPT = "fifo_receipt"
    FIFO_BY_EXPIRY = "fifo_expiry"


class FreshnessState(str, Enum):
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    HEALTHY = "healthy"


@dataclass(frozen=True)
class AllocationRequest:
    """Request to deduct quantity of one product from one warehouse"""
    product_id: int
    warehouse_id: int
    quantity: int
    strategy: AllocationStrategy = AllocationStrategy.FIFO_BY_RECEIPT
    allow_partial: bool = False


@dataclass(frozen=True)
class AllocationLine:
    """Quantity taken from a single batch"""
    batch_id: int
    batch_number: str
    quantity_deducted: int
    unit_cost: Decimal
    remaining_after: int
    status_after: BatchStatus

    @property
    def line_cost(self) -> Decimal:
        return to_money(self.unit_cost * self.quantity_deducted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'batch_id': self.batch_id,
            'batch_number': self.batch_number,
            'quantity_deducted': self.quantity_deducted,
            'unit_cost': str(self.unit_cost),
            'line_cost': str(self.line_cost),
            'remaining_after': self.remaining_after,
            'status_after': self.status_after.value,
        }


@dataclass
class AllocationResult:
    """Ordered per-batch deductions plus any unfilled quantity"""
    product_id: int
    warehouse_id: int
    requested: int
    strategy: AllocationStrategy
    lines: List[AllocationLine] = field(default_factory=list)
    shortfall: int = 0

    @property
    def total_deducted(self) -> int:
        return sum(line.quantity_deducted for line in self.lines)

    @property
    def total_cost(self) -> Decimal:
        return sum((line.line_cost for line in self.lines), Decimal("0.00"))

    @property
    def fully_allocated(self) -> bool:
        return self.shortfall == 0

    def as_tuples(self) -> List[Tuple[int, int, Decimal]]:
        return [(line.batch_id, line.quantity_deducted, line.unit_cost) for line in self.lines]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'warehouse_id': self.warehouse_id,
            'requested': self.requested,
            'strategy': self.strategy.value,
            'lines': [line.to_dict() for line in self.lines],
            'total_deducted': self.total_deducted,
            'total_cost': str(self.total_cost),
            'shortfall': self.shortfall,
            'fully_allocated': self.fully_allocated,
        }


@dataclass(frozen=True)
class UtilizationSnapshot:
    """Warehouse utilization as stored after a write or a recompute"""
    warehouse_id: int
    capacity: int
    current_utilization: int
    drift: int = 0

    @property
    def capacity_exceeded(self) -> bool:
        # Zero capacity means the warehouse has no configured limit
        return self.capacity > 0 and self.current_utilization > self.capacity

    @property
    def utilization_percentage(self) -> Optional[float]:
        if not self.capacity:
            return None
        return round(self.current_utilization / self.capacity * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'warehouse_id': self.warehouse_id,
            'capacity': self.capacity,
            'current_utilization': self.current_utilization,
            'utilization_percentage': self.utilization_percentage,
            'drift': self.drift,
            'capacity_exceeded': self.capacity_exceeded,
        }


@dataclass(frozen=True)
class CreatedBatch:
    """A batch inserted by an increase or a transfer"""
    batch_id: int
    batch_number: str
    warehouse_id: int
    quantity: int
    unit_cost: Decimal
    received_date: Any
    expiry_date: Any = None
    source_batch_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'batch_id': self.batch_id,
            'batch_number': self.batch_number,
            'warehouse_id': self.warehouse_id,
            'quantity': self.quantity,
            'unit_cost': str(self.unit_cost),
            'received_date': TimezoneUtils.format_datetime_for_api(self.received_date),
            'expiry_date': TimezoneUtils.format_datetime_for_api(self.expiry_date),
            'source_batch_id': self.source_batch_id,
        }


@dataclass
class MutationResult:
    """Outcome of adjust_stock / deduct_for_sale / mark_batch"""
    kind: AdjustmentKind
    product_id: int
    warehouse_id: int
    quantity: int
    utilization: UtilizationSnapshot
    allocation: Optional[AllocationResult] = None
    created_batches: List[CreatedBatch] = field(default_factory=list)
    reference_id: Optional[str] = None

    @property
    def capacity_exceeded(self) -> bool:
        return self.utilization.capacity_exceeded

    def as_tuples(self) -> List[Tuple[int, int, Decimal]]:
        return self.allocation.as_tuples() if self.allocation else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'product_id': self.product_id,
            'warehouse_id': self.warehouse_id,
            'quantity': self.quantity,
            'reference_id': self.reference_id,
            'allocation': self.allocation.to_dict() if self.allocation else None,
            'created_batches': [created.to_dict() for created in self.created_batches],
            'utilization': self.utilization.to_dict(),
            'capacity_exceeded': self.capacity_exceeded,
        }


@dataclass
class TransferResult:
    """Outcome of transfer_stock: source deductions and their destination mirrors"""
    product_id: int
    quantity: int
    allocation: AllocationResult
    source: UtilizationSnapshot
    destination: UtilizationSnapshot
    mirrored_batches: List[CreatedBatch] = field(default_factory=list)
    reference_id: Optional[str] = None

    @property
    def capacity_exceeded(self) -> bool:
        return self.destination.capacity_exceeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'quantity': self.quantity,
            'reference_id': self.reference_id,
            'allocation': self.allocation.to_dict(),
            'mirrored_batches': [created.to_dict() for created in self.mirrored_batches],
            'source': self.source.to_dict(),
            'destination': self.destination.to_dict(),
            'capacity_exceeded': self.capacity_exceeded,
        }


@dataclass(frozen=True)
class SaleLine:
    """One product line of a POS sale"""
    product_id: int
    quantity: int
