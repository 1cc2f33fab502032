import threading
import time

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from stocklot.extensions import db
from stocklot.models import Batch, StockMovement, Warehouse
from stocklot.services.stock_engine import (
    AdjustmentKind,
    ConcurrencyConflict,
    InsufficientStock,
    KeyedLockRegistry,
    RetryableInfraError,
    SqlBatchCatalog,
    StockMutationService,
    StockSettings,
    stock_transaction,
)
from tests.conftest import make_batch, reload, utc


class FlakyCatalog(SqlBatchCatalog):
    """Fails after the batch rows were already written."""

    def record_movement(self, **fields):
        raise OperationalError('INSERT INTO stock_movement', {}, Exception('disk I/O error'))


def test_store_failure_mid_operation_rolls_everything_back(two_batches, product, warehouse):
    batch_a, batch_b = two_batches
    service = StockMutationService(FlakyCatalog(db.session))

    with pytest.raises(RetryableInfraError) as exc_info:
        service.adjust_stock(AdjustmentKind.DECREASE, product.id, warehouse.id, 120, 'sale')

    assert exc_info.value.retryable
    assert reload(Batch, batch_a.id).quantity_remaining == 100
    assert reload(Batch, batch_b.id).quantity_remaining == 50
    assert reload(Warehouse, warehouse.id).current_utilization == 150
    assert StockMovement.query.count() == 0


def test_lock_timeout_is_retryable(two_batches, product, warehouse):
    registry = KeyedLockRegistry()
    service = StockMutationService(
        settings=StockSettings(lock_timeout_seconds=0.05), lock_registry=registry,
    )

    with registry.hold([(product.id, warehouse.id)]):
        with pytest.raises(RetryableInfraError):
            service.adjust_stock(AdjustmentKind.DECREASE, product.id, warehouse.id, 1, 'sale')

    assert reload(Batch, two_batches[0].id).quantity_remaining == 100


def test_other_keys_are_not_blocked(two_batches, product, warehouse):
    registry = KeyedLockRegistry()
    service = StockMutationService(
        settings=StockSettings(lock_timeout_seconds=0.05), lock_registry=registry,
    )

    with registry.hold([(product.id, warehouse.id + 1000)]):
        result = service.adjust_stock(AdjustmentKind.DECREASE, product.id, warehouse.id, 1, 'sale')

    assert result.quantity == 1


def test_lock_registry_releases_after_use():
    registry = KeyedLockRegistry()
    with registry.hold([(2, 1), (1, 1)]) as ordered:
        assert ordered == [(1, 1), (2, 1)]
        assert registry.is_locked((1, 1))
    assert not registry.is_locked((1, 1))
    assert not registry.is_locked((2, 1))


def test_lock_registry_forgets_idle_keys():
    registry = KeyedLockRegistry()
    with registry.hold([(1, 1), (2, 1)]):
        assert registry.active_keys() == [(1, 1), (2, 1)]
    assert registry.active_keys() == []


def test_lock_registry_keeps_a_key_while_someone_waits():
    registry = KeyedLockRegistry()
    waiting = threading.Event()
    outcome = []

    def contender():
        waiting.set()
        with registry.hold([(1, 1)], timeout=2.0):
            outcome.append(registry.active_keys())

    with registry.hold([(1, 1)]):
        worker = threading.Thread(target=contender)
        worker.start()
        waiting.wait(1.0)
        time.sleep(0.05)
    worker.join(2.0)

    assert outcome == [[(1, 1)]]
    assert registry.active_keys() == []


def test_lock_registry_forgets_keys_after_a_timeout():
    registry = KeyedLockRegistry()
    with registry.hold([(1, 1)]):
        with pytest.raises(RetryableInfraError):
            with registry.hold([(0, 1), (1, 1)], timeout=0.01):
                pass
        assert registry.active_keys() == [(1, 1)]
    assert registry.active_keys() == []


class TestErrorMapping:
    def test_stale_row_becomes_concurrency_conflict(self, app_context):
        with pytest.raises(ConcurrencyConflict):
            with stock_transaction(db.session, KeyedLockRegistry(), [(1, 1)]):
                raise StaleDataError('row changed')

    def test_integrity_error_becomes_concurrency_conflict(self, app_context):
        with pytest.raises(ConcurrencyConflict):
            with stock_transaction(db.session, KeyedLockRegistry()):
                raise IntegrityError('INSERT', {}, Exception('UNIQUE constraint failed'))

    def test_engine_errors_pass_through(self, app_context):
        with pytest.raises(InsufficientStock):
            with stock_transaction(db.session, KeyedLockRegistry()):
                raise InsufficientStock(1, 1, 10, 3)

    def test_unexpected_errors_are_reraised(self, app_context):
        with pytest.raises(ZeroDivisionError):
            with stock_transaction(db.session, KeyedLockRegistry()):
                1 / 0


def test_concurrent_deductions_never_oversell(app, product, warehouse):
    make_batch(product, warehouse, 50, utc(2024, 1, 1))
    product_id, warehouse_id = product.id, warehouse.id
    db.session.remove()

    outcomes = []
    outcome_guard = threading.Lock()

    def worker():
        with app.app_context():
            try:
                StockMutationService().adjust_stock('decrease', product_id, warehouse_id, 7, 'sale')
                outcome = 'ok'
            except InsufficientStock:
                outcome = 'short'
        with outcome_guard:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count('ok') == 7
    assert outcomes.count('short') == 3
    remaining = sum(batch.quantity_remaining for batch in Batch.query.all())
    assert remaining == 1
    assert reload(Warehouse, warehouse_id).current_utilization == 1
