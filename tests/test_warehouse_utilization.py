from sqlalchemy import text

from stocklot.extensions import db
from stocklot.models import Warehouse
from stocklot.services.stock_engine import (
    AdjustmentKind,
    SqlBatchCatalog,
    StockMutationService,
    UtilizationSnapshot,
    WarehouseUtilizationTracker,
)
from tests.conftest import make_batch, make_product, make_warehouse, reload, utc


def test_counter_tracks_active_quantity_through_mutations(product, warehouse):
    service = StockMutationService()
    service.adjust_stock(AdjustmentKind.INCREASE, product.id, warehouse.id, 30, 'restock', '1.00')
    service.adjust_stock(AdjustmentKind.INCREASE, product.id, warehouse.id, 20, 'restock', '1.00')
    service.adjust_stock(AdjustmentKind.DECREASE, product.id, warehouse.id, 35, 'sale')

    catalog = SqlBatchCatalog(db.session)
    assert reload(Warehouse, warehouse.id).current_utilization == catalog.sum_active_quantity(warehouse.id) == 15


def test_products_sharing_a_warehouse_both_count(product, warehouse):
    other = make_product(sku='SKU-2')
    service = StockMutationService()
    service.adjust_stock('increase', product.id, warehouse.id, 10, 'restock', '1.00')
    service.adjust_stock('increase', other.id, warehouse.id, 7, 'restock', '1.00')

    assert service.utilization_snapshot(warehouse.id).current_utilization == 17


def test_recompute_repairs_drift(product, warehouse):
    make_batch(product, warehouse, 40, utc(2024, 1, 1))
    stored = reload(Warehouse, warehouse.id)
    stored.current_utilization = 999
    db.session.commit()

    snapshot = StockMutationService().recompute_utilization(warehouse.id)

    assert snapshot.current_utilization == 40
    assert snapshot.drift == 40 - 999
    assert reload(Warehouse, warehouse.id).current_utilization == 40


def test_recompute_measures_drift_against_the_stored_counter(product, warehouse):
    make_batch(product, warehouse, 40, utc(2024, 1, 1))
    tracker = WarehouseUtilizationTracker(SqlBatchCatalog(db.session))
    assert tracker.snapshot(warehouse.id).current_utilization == 40

    # Raw SQL leaves the Warehouse already loaded in this session untouched
    db.session.execute(
        text('UPDATE warehouse SET current_utilization = 70 WHERE id = :id'),
        {'id': warehouse.id},
    )

    snapshot = tracker.recompute(warehouse.id)

    assert snapshot.drift == -30
    assert snapshot.current_utilization == 40


def test_recompute_all_reports_each_warehouse(product, warehouse):
    other_wh = make_warehouse(code='WH-2')
    make_batch(product, other_wh, 5, utc(2024, 1, 1))

    snapshots = StockMutationService().recompute_all_utilization()

    assert {snapshot.warehouse_id: snapshot.current_utilization for snapshot in snapshots} == {
        warehouse.id: 0,
        other_wh.id: 5,
    }
    assert all(snapshot.drift == 0 for snapshot in snapshots)


def test_negative_counter_is_reconciled_in_place(product, warehouse):
    make_batch(product, warehouse, 10, utc(2024, 1, 1))
    stored = reload(Warehouse, warehouse.id)
    stored.current_utilization = 3
    db.session.commit()

    result = StockMutationService().adjust_stock('decrease', product.id, warehouse.id, 8, 'sale')

    assert result.utilization.current_utilization == 2
    assert reload(Warehouse, warehouse.id).current_utilization == 2


def test_capacity_exceeded_is_advisory(product, app_context):
    small = make_warehouse(code='TINY', capacity=10)

    result = StockMutationService().adjust_stock('increase', product.id, small.id, 25, 'pallet override', '1.00')

    assert result.capacity_exceeded
    assert result.utilization.utilization_percentage == 250.0
    assert reload(Warehouse, small.id).is_over_capacity


def test_zero_capacity_means_unbounded(product, app_context):
    unbounded = make_warehouse(code='YARD', capacity=0)

    result = StockMutationService().adjust_stock('increase', product.id, unbounded.id, 10_000, 'bulk', '0.10')

    assert not result.capacity_exceeded
    assert result.utilization.utilization_percentage is None


def test_snapshot_properties():
    snapshot = UtilizationSnapshot(warehouse_id=1, capacity=200, current_utilization=50)
    assert snapshot.utilization_percentage == 25.0
    assert not snapshot.capacity_exceeded
    assert snapshot.to_dict()['utilization_percentage'] == 25.0


def test_tracker_zero_delta_is_read_only(warehouse):
    tracker = WarehouseUtilizationTracker(SqlBatchCatalog(db.session))
    snapshot = tracker.adjust(warehouse.id, 0)
    assert snapshot.current_utilization == 0
    assert snapshot.capacity == 1000
