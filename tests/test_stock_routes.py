from stocklot.models import Batch, BatchStatus, Warehouse
from tests.conftest import make_batch, make_product, make_warehouse, reload, utc

BASE = '/api/stock'


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'


def test_increase_returns_created_batch(client, product, warehouse):
    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'increase',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 12,
        'reason': 'restock',
        'unit_cost': '1.25',
        'expiry_date': '2030-01-31',
    })

    assert response.status_code == 201
    body = response.get_json()
    assert body['success'] is True
    created = body['result']['created_batches'][0]
    assert created['quantity'] == 12
    assert created['unit_cost'] == '1.25'
    assert created['expiry_date'].startswith('2030-01-31T00:00:00')
    assert body['result']['utilization']['current_utilization'] == 12


def test_decrease_returns_allocation_lines(client, two_batches, product, warehouse):
    batch_a, batch_b = two_batches

    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'decrease',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 120,
        'reason': 'sale',
    })

    assert response.status_code == 200
    lines = response.get_json()['result']['allocation']['lines']
    assert [(line['batch_id'], line['quantity_deducted']) for line in lines] == [(batch_a.id, 100), (batch_b.id, 20)]
    assert lines[0]['status_after'] == 'depleted'


def test_insufficient_stock_is_409(client, two_batches, product, warehouse):
    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'decrease',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 200,
        'reason': 'sale',
    })

    assert response.status_code == 409
    body = response.get_json()
    assert body['error'] == 'insufficient_stock'
    assert body['shortfall'] == 50
    assert body['retryable'] is False


def test_invalid_quantity_is_400(client, product, warehouse):
    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'decrease',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 0,
        'reason': 'sale',
    })
    assert response.status_code == 400
    assert response.get_json()['error'] == 'invalid_quantity'


def test_non_finite_unit_cost_is_400(client, product, warehouse):
    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'increase',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 5,
        'reason': 'restock',
        'unit_cost': 'NaN',
    })
    assert response.status_code == 400
    assert response.get_json()['error'] == 'invalid_argument'
    assert Batch.query.count() == 0


def test_allow_partial_must_be_a_json_boolean(client, two_batches, product, warehouse):
    batch_a, batch_b = two_batches

    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'decrease',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 200,
        'reason': 'sale',
        'allow_partial': 'false',
    })

    assert response.status_code == 400
    body = response.get_json()
    assert body['error'] == 'invalid_argument'
    assert body['field'] == 'allow_partial'
    assert reload(Batch, batch_a.id).quantity_remaining == 100
    assert reload(Batch, batch_b.id).quantity_remaining == 50
    assert reload(Warehouse, warehouse.id).current_utilization == 150


def test_allow_partial_false_keeps_all_or_nothing(client, two_batches, product, warehouse):
    batch_a, _ = two_batches

    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'decrease',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 200,
        'reason': 'sale',
        'allow_partial': False,
    })

    assert response.status_code == 409
    assert reload(Batch, batch_a.id).status == BatchStatus.ACTIVE


def test_allow_partial_true_drains_what_is_there(client, two_batches, product, warehouse):
    response = client.post(f'{BASE}/adjustments', json={
        'kind': 'decrease',
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 200,
        'reason': 'sale',
        'allow_partial': True,
    })

    assert response.status_code == 200
    allocation = response.get_json()['result']['allocation']
    assert allocation['shortfall'] == 50


def test_missing_ids_are_400(client, app_context):
    response = client.post(f'{BASE}/adjustments', json={'kind': 'increase', 'quantity': 1})
    assert response.status_code == 400
    assert response.get_json()['error'] == 'invalid_argument'


def test_non_object_body_is_400(client, app_context):
    response = client.post(f'{BASE}/adjustments', json=[1, 2, 3])
    assert response.status_code == 400


def test_transfer_endpoint(client, product, warehouse):
    destination = make_warehouse(code='WH-2')
    make_batch(product, warehouse, 30, utc(2024, 1, 1))

    response = client.post(f'{BASE}/transfers', json={
        'from_warehouse_id': warehouse.id,
        'to_warehouse_id': destination.id,
        'product_id': product.id,
        'quantity': 30,
        'reason': 'rebalance',
    })

    assert response.status_code == 201
    result = response.get_json()['result']
    assert result['destination']['current_utilization'] == 30
    assert len(result['mirrored_batches']) == 1


def test_same_warehouse_transfer_is_400(client, product, warehouse):
    response = client.post(f'{BASE}/transfers', json={
        'from_warehouse_id': warehouse.id,
        'to_warehouse_id': warehouse.id,
        'product_id': product.id,
        'quantity': 1,
        'reason': 'noop',
    })
    assert response.status_code == 400
    assert response.get_json()['error'] == 'invalid_transfer'


def test_sale_endpoint_reports_cost_of_goods(client, product, warehouse):
    other = make_product(sku='SKU-2')
    make_batch(product, warehouse, 10, utc(2024, 1, 1), unit_cost='2.00', batch_number='S1')
    make_batch(other, warehouse, 10, utc(2024, 1, 1), unit_cost='0.50', batch_number='S2')

    response = client.post(f'{BASE}/sales', json={
        'warehouse_id': warehouse.id,
        'reference_id': 'POS-9',
        'lines': [{'product_id': product.id, 'quantity': 3}, {'product_id': other.id, 'quantity': 4}],
    })

    assert response.status_code == 201
    body = response.get_json()
    assert body['cost_of_goods_sold'] == '8.00'
    assert len(body['lines']) == 2


def test_sale_lines_must_be_objects(client, warehouse):
    response = client.post(f'{BASE}/sales', json={'warehouse_id': warehouse.id, 'lines': 'nope'})
    assert response.status_code == 400


def test_preview_does_not_write(client, two_batches, product, warehouse):
    batch_a, _ = two_batches

    response = client.post(f'{BASE}/allocations/preview', json={
        'product_id': product.id,
        'warehouse_id': warehouse.id,
        'quantity': 500,
    })

    assert response.status_code == 200
    result = response.get_json()['result']
    assert result['shortfall'] == 350
    assert result['fully_allocated'] is False
    assert reload(Batch, batch_a.id).quantity_remaining == 100


def test_list_batches_filters_by_status(client, product, warehouse):
    make_batch(product, warehouse, 10, utc(2024, 1, 1), batch_number='LIVE')
    make_batch(product, warehouse, 0, utc(2024, 1, 2), batch_number='DONE', status=BatchStatus.DEPLETED, original=4)

    active = client.get(f'{BASE}/batches?product_id={product.id}').get_json()
    everything = client.get(f'{BASE}/batches?status=all').get_json()
    depleted = client.get(f'{BASE}/batches?status=depleted').get_json()

    assert [batch['batch_number'] for batch in active['batches']] == ['LIVE']
    assert everything['count'] == 2
    assert [batch['batch_number'] for batch in depleted['batches']] == ['DONE']


def test_list_batches_rejects_unknown_status(client, app_context):
    response = client.get(f'{BASE}/batches?status=rotten')
    assert response.status_code == 400


def test_mark_batch_endpoint(client, product, warehouse):
    batch = make_batch(product, warehouse, 6, utc(2024, 1, 1))

    response = client.post(f'{BASE}/batches/{batch.id}/mark', json={'status': 'damaged', 'reason': 'dropped'})

    assert response.status_code == 200
    assert reload(Batch, batch.id).status is BatchStatus.DAMAGED


def test_mark_missing_batch_is_404(client, app_context):
    response = client.post(f'{BASE}/batches/999/mark', json={'status': 'damaged', 'reason': 'dropped'})
    assert response.status_code == 404
    assert response.get_json()['error'] == 'batch_not_found'


def test_expiry_sweep_endpoint(client, product, warehouse):
    make_batch(product, warehouse, 6, utc(2024, 1, 1), expiry=utc(2024, 2, 1))

    response = client.post(f'{BASE}/expiry-sweep', json={'as_of': '2024-03-01T00:00:00Z'})

    assert response.status_code == 200
    assert response.get_json()['count'] == 1


def test_utilization_and_recompute_endpoints(client, product, warehouse):
    make_batch(product, warehouse, 6, utc(2024, 1, 1))

    snapshot = client.get(f'{BASE}/warehouses/{warehouse.id}/utilization').get_json()['utilization']
    recomputed = client.post(f'{BASE}/warehouses/{warehouse.id}/recompute').get_json()['utilization']

    assert snapshot['current_utilization'] == 6
    assert snapshot['utilization_percentage'] == 0.6
    assert recomputed['drift'] == 0


def test_summary_and_alerts_endpoints(client, app_context):
    product = make_product(sku='LOW', min_stock_level=10)
    warehouse = make_warehouse(code='WH-A')
    make_batch(product, warehouse, 3, utc(2024, 1, 1), unit_cost='2.00')

    summary = client.get(f'{BASE}/products/{product.id}/summary').get_json()['summary']
    alerts = client.get(f'{BASE}/alerts?severity=warning').get_json()

    assert summary['total_stock'] == 3
    assert summary['inventory_value'] == '6.00'
    assert [alert['type'] for alert in alerts['alerts']] == ['low_stock']
