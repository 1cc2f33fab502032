from stocklot.models import BatchStatus
from stocklot.services.stock_engine import StockReporter
from tests.conftest import make_batch, make_product, make_warehouse, utc

AS_OF = utc(2024, 6, 1, 12)


def test_batch_summary(product, warehouse):
    other_wh = make_warehouse(code='WH-2')
    make_batch(product, warehouse, 10, utc(2024, 5, 1), unit_cost='2.00', expiry=utc(2024, 5, 20), batch_number='PAST')
    make_batch(product, warehouse, 30, utc(2024, 5, 11), unit_cost='4.00', expiry=utc(2024, 6, 10), batch_number='SOON')
    make_batch(product, other_wh, 10, utc(2024, 5, 21), unit_cost='1.00', batch_number='NODATE')
    make_batch(product, warehouse, 0, utc(2024, 4, 1), batch_number='OLD', status=BatchStatus.DEPLETED, original=8)

    summary = StockReporter().batch_summary(product.id, AS_OF)

    assert summary['total_stock'] == 50
    assert summary['active_batches'] == 3
    assert summary['depleted_batches'] == 1
    assert summary['past_expiry_batches'] == 1
    assert summary['expiring_soon_batches'] == 1
    assert summary['inventory_value'] == '150.00'
    assert summary['weighted_average_cost'] == '3.00'
    assert summary['oldest_received'].startswith('2024-05-01')
    assert summary['average_batch_age_days'] == 21.0
    assert summary['by_warehouse'] == [
        {'warehouse_id': warehouse.id, 'quantity': 40},
        {'warehouse_id': other_wh.id, 'quantity': 10},
    ]


def test_summary_for_product_without_stock(product):
    summary = StockReporter().batch_summary(product.id, AS_OF)
    assert summary['total_stock'] == 0
    assert summary['weighted_average_cost'] is None
    assert summary['average_batch_age_days'] is None


def test_expiring_batches_window(product, warehouse):
    make_batch(product, warehouse, 5, utc(2024, 5, 1), expiry=utc(2024, 6, 3), batch_number='D2')
    make_batch(product, warehouse, 5, utc(2024, 5, 1), expiry=utc(2024, 6, 20), batch_number='D19')
    make_batch(product, warehouse, 5, utc(2024, 5, 1), expiry=utc(2024, 5, 30), batch_number='GONE')

    rows = StockReporter().expiring_batches(7, AS_OF)
    wide = StockReporter().expiring_batches(None, AS_OF)

    assert [row['batch_number'] for row in rows] == ['D2']
    assert rows[0]['days_until_expiry'] == 2
    assert rows[0]['freshness'] == 'expiring_soon'
    assert [row['batch_number'] for row in wide] == ['D2', 'D19']


def test_alerts(app_context):
    empty = make_product(sku='EMPTY', name='Empty', min_stock_level=5)
    low = make_product(sku='LOW', name='Low', min_stock_level=30)
    make_product(sku='UNTRACKED', name='Untracked', min_stock_level=0)
    full = make_warehouse(code='FULL', name='Full', capacity=20)
    make_batch(low, full, 7, utc(2024, 5, 1), expiry=utc(2024, 6, 4), batch_number='L1')
    make_batch(low, full, 12, utc(2024, 5, 2), expiry=utc(2024, 5, 25), batch_number='L2')

    alerts = StockReporter().collect_stock_alerts(AS_OF)
    by_type = {}
    for alert in alerts:
        by_type.setdefault(alert.type, []).append(alert)

    assert [(a.entity_id, a.severity) for a in by_type['low_stock']] == [(empty.id, 'critical'), (low.id, 'info')]
    assert [a.severity for a in by_type['expiring_soon']] == ['critical']
    assert [a.details['quantity'] for a in by_type['expired']] == [12]
    assert [(a.entity_id, a.severity) for a in by_type['warehouse_full']] == [(full.id, 'critical')]
