"""
Batch catalog: the persistence contract the engine consumes.

The catalog holds no business rules. It guarantees the FIFO read order and
performs writes inside whatever transaction the caller has open; committing and
rolling back belong to ``stock_transaction``.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone as dt_timezone
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, select

from ...exceptions import BatchNotFound
from ...models import Batch, BatchStatus, Product, StockMovement, Warehouse

logger = logging.getLogger(__name__)


class BatchCatalog(ABC):
    """Ordered batch reads and transactional writes."""

    @abstractmethod
    def list_active_batches(self, product_id: int, warehouse_id: int, *, for_update: bool = True) -> List[Batch]:
        """ACTIVE batches with stock, ascending by (received_date, batch_number)."""

    @abstractmethod
    def insert_batch(self, batch: Batch) -> Batch:
        ...

    @abstractmethod
    def update_batch_quantity(self, batch_id: int, new_quantity: int, new_status: BatchStatus) -> Batch:
        ...

    @abstractmethod
    def get_batch(self, batch_id: int, *, for_update: bool = False) -> Batch:
        ...

    @abstractmethod
    def batch_number_exists(self, batch_number: str) -> bool:
        ...

    @abstractmethod
    def get_warehouse(self, warehouse_id: int, *, for_update: bool = False,
                      refresh: bool = False) -> Optional[Warehouse]:
        """``refresh`` re-reads the row even when the session already holds it."""

    @abstractmethod
    def list_warehouse_ids(self) -> List[int]:
        ...

    @abstractmethod
    def adjust_warehouse_utilization(self, warehouse_id: int, delta: int) -> Warehouse:
        """Add ``delta`` to the cached counter in one atomic UPDATE."""

    @abstractmethod
    def reconcile_warehouse_utilization(self, warehouse_id: int) -> Warehouse:
        """Overwrite the cached counter with the authoritative ACTIVE sum."""

    @abstractmethod
    def sum_active_quantity(self, warehouse_id: int, product_id: Optional[int] = None) -> int:
        ...

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]:
        ...

    @abstractmethod
    def record_movement(self, **fields) -> StockMovement:
        ...

    @abstractmethod
    def list_expired_candidates(self, cutoff: datetime) -> List[Batch]:
        ...

    @abstractmethod
    def list_batches(
        self,
        *,
        product_id: Optional[int] = None,
        warehouse_id: Optional[int] = None,
        statuses: Optional[Iterable[BatchStatus]] = None,
    ) -> List[Batch]:
        ...


def _as_utc(value: datetime) -> datetime:
    """Normalise a cutoff to UTC so it compares with stored UTC timestamps."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt_timezone.utc)
    return value.astimezone(dt_timezone.utc)


class SqlBatchCatalog(BatchCatalog):
    """BatchCatalog over a (Flask-)SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    def _fifo_query(self, product_id: int, warehouse_id: int):
        return (
            self.session.query(Batch)
            .filter(
                Batch.product_id == product_id,
                Batch.warehouse_id == warehouse_id,
                Batch.status == BatchStatus.ACTIVE,
                Batch.quantity_remaining > 0,
            )
            .order_by(Batch.received_date.asc(), Batch.batch_number.asc())
        )

    def list_active_batches(self, product_id, warehouse_id, *, for_update=True):
        query = self._fifo_query(product_id, warehouse_id)
        if for_update:
            # Rendered as FOR UPDATE where the dialect supports row locks
            query = query.with_for_update().populate_existing()
        return query.all()

    def insert_batch(self, batch):
        self.session.add(batch)
        self.session.flush()
        return batch

    def update_batch_quantity(self, batch_id, new_quantity, new_status):
        batch = self.get_batch(batch_id)
        batch.apply_quantity(new_quantity, new_status)
        return batch

    def get_batch(self, batch_id, *, for_update=False):
        batch = self.session.get(
            Batch,
            batch_id,
            with_for_update=for_update or None,
            populate_existing=for_update,
        )
        if batch is None:
            raise BatchNotFound(batch_id)
        return batch

    def batch_number_exists(self, batch_number):
        return self.session.query(
            self.session.query(Batch.id).filter(Batch.batch_number == batch_number).exists()
        ).scalar()

    def get_warehouse(self, warehouse_id, *, for_update=False, refresh=False):
        return self.session.get(
            Warehouse, warehouse_id, with_for_update=for_update or None, populate_existing=refresh,
        )

    def list_warehouse_ids(self):
        return [row[0] for row in self.session.query(Warehouse.id).order_by(Warehouse.id.asc()).all()]

    def adjust_warehouse_utilization(self, warehouse_id, delta):
        self.session.flush()
        # Relative UPDATE so writers for different products never lose each other's delta
        self.session.query(Warehouse).filter(Warehouse.id == warehouse_id).update(
            {Warehouse.current_utilization: Warehouse.current_utilization + delta},
            synchronize_session=False,
        )
        return self.session.get(Warehouse, warehouse_id, populate_existing=True)

    def reconcile_warehouse_utilization(self, warehouse_id):
        self.session.flush()
        active_sum = (
            select(func.coalesce(func.sum(Batch.quantity_remaining), 0))
            .where(Batch.warehouse_id == warehouse_id, Batch.status == BatchStatus.ACTIVE)
            .scalar_subquery()
        )
        self.session.query(Warehouse).filter(Warehouse.id == warehouse_id).update(
            {Warehouse.current_utilization: active_sum},
            synchronize_session=False,
        )
        return self.session.get(Warehouse, warehouse_id, populate_existing=True)

    def sum_active_quantity(self, warehouse_id, product_id=None):
        query = self.session.query(func.coalesce(func.sum(Batch.quantity_remaining), 0)).filter(
            Batch.warehouse_id == warehouse_id,
            Batch.status == BatchStatus.ACTIVE,
        )
        if product_id is not None:
            query = query.filter(Batch.product_id == product_id)
        return int(query.scalar() or 0)

    def get_product(self, product_id):
        return self.session.get(Product, product_id)

    def record_movement(self, **fields):
        movement = StockMovement(**fields)
        self.session.add(movement)
        return movement

    def list_expired_candidates(self, cutoff):
        return (
            self.session.query(Batch)
            .filter(
                Batch.status == BatchStatus.ACTIVE,
                Batch.quantity_remaining > 0,
                Batch.expiry_date.isnot(None),
                Batch.expiry_date < _as_utc(cutoff),
            )
            .order_by(Batch.expiry_date.asc(), Batch.id.asc())
            .all()
        )

    def list_batches(self, *, product_id=None, warehouse_id=None, statuses: Optional[Sequence[BatchStatus]] = None):
        query = self.session.query(Batch)
        if product_id is not None:
            query = query.filter(Batch.product_id == product_id)
        if warehouse_id is not None:
            query = query.filter(Batch.warehouse_id == warehouse_id)
        if statuses:
            query = query.filter(Batch.status.in_(list(statuses)))
        return query.order_by(Batch.received_date.asc(), Batch.batch_number.asc()).all()
