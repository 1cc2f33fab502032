from decimal import Decimal

from flask import Blueprint, jsonify, request

from ...exceptions import InvalidArgument
from ...models import BatchStatus
from ...services.stock_engine import SaleLine, StockMutationService, StockReporter
from ...utils.timezone_utils import TimezoneUtils

stock_api_bp = Blueprint('stock_api', __name__)


def _payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgument('Request body must be a JSON object')
    return data


def _required_id(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f'{key} must be an integer', field=key)
    return value


def _optional_bool(data, key, default=False):
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidArgument(f'{key} must be true or false', field=key)
    return value


def _optional_datetime(data, key):
    raw = data.get(key)
    if raw in (None, ''):
        return None
    try:
        return TimezoneUtils.parse_iso(raw)
    except ValueError:
        raise InvalidArgument(f'{key} must be an ISO-8601 timestamp', field=key) from None


def _query_int(key):
    raw = request.args.get(key)
    if raw in (None, ''):
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgument(f'{key} must be an integer', field=key) from None


def _as_of_arg():
    raw = request.args.get('as_of')
    if not raw:
        return None
    try:
        return TimezoneUtils.parse_iso(raw)
    except ValueError:
        raise InvalidArgument('as_of must be an ISO-8601 timestamp', field='as_of') from None


@stock_api_bp.route('/adjustments', methods=['POST'])
def create_adjustment():
    """Increase stock with a new batch, or deduct FIFO (decrease/expired/damaged)"""
    data = _payload()
    result = StockMutationService().adjust_stock(
        data.get('kind'),
        _required_id(data, 'product_id'),
        _required_id(data, 'warehouse_id'),
        data.get('quantity'),
        data.get('reason'),
        data.get('unit_cost'),
        expiry_date=_optional_datetime(data, 'expiry_date'),
        shelf_life_days=data.get('shelf_life_days'),
        reference_id=data.get('reference_id'),
        strategy=data.get('strategy'),
        allow_partial=_optional_bool(data, 'allow_partial'),
        source_type=data.get('source_type') or 'manual',
    )
    status = 201 if result.created_batches else 200
    return jsonify({'success': True, 'result': result.to_dict()}), status


@stock_api_bp.route('/transfers', methods=['POST'])
def create_transfer():
    data = _payload()
    result = StockMutationService().transfer_stock(
        _required_id(data, 'from_warehouse_id'),
        _required_id(data, 'to_warehouse_id'),
        _required_id(data, 'product_id'),
        data.get('quantity'),
        data.get('reason'),
        reference_id=data.get('reference_id'),
        strategy=data.get('strategy'),
    )
    return jsonify({'success': True, 'result': result.to_dict()}), 201


@stock_api_bp.route('/sales', methods=['POST'])
def create_sale():
    """Deduct every line of a POS sale in one transaction"""
    data = _payload()
    lines = data.get('lines')
    if not isinstance(lines, list) or not all(isinstance(line, dict) for line in lines):
        raise InvalidArgument('lines must be a list of {product_id, quantity} objects', field='lines')
    sale_lines = [SaleLine(_required_id(line, 'product_id'), line.get('quantity')) for line in lines]
    results = StockMutationService().deduct_for_sale(
        _required_id(data, 'warehouse_id'),
        sale_lines,
        reference_id=data.get('reference_id'),
        reason=data.get('reason') or 'sale',
        strategy=data.get('strategy'),
    )
    total_cost = sum((result.allocation.total_cost for result in results), Decimal('0.00'))
    return jsonify({
        'success': True,
        'lines': [result.to_dict() for result in results],
        'cost_of_goods_sold': str(total_cost),
    }), 201


@stock_api_bp.route('/allocations/preview', methods=['POST'])
def preview_allocation():
    data = _payload()
    result = StockMutationService().preview_allocation(
        _required_id(data, 'product_id'),
        _required_id(data, 'warehouse_id'),
        data.get('quantity'),
        data.get('strategy'),
        as_of=_optional_datetime(data, 'as_of'),
    )
    return jsonify({'success': True, 'result': result.to_dict()})


@stock_api_bp.route('/batches', methods=['GET'])
def list_batches():
    raw_status = request.args.get('status', BatchStatus.ACTIVE.value)
    statuses = None
    if raw_status != 'all':
        try:
            statuses = [BatchStatus(value.strip()) for value in raw_status.split(',') if value.strip()]
        except ValueError:
            raise InvalidArgument(f'Unknown batch status in {raw_status!r}', field='status') from None
    batches = StockReporter().list_batches(
        product_id=_query_int('product_id'),
        warehouse_id=_query_int('warehouse_id'),
        statuses=statuses,
        as_of=_as_of_arg(),
    )
    return jsonify({'success': True, 'batches': batches, 'count': len(batches)})


@stock_api_bp.route('/batches/<int:batch_id>/mark', methods=['POST'])
def mark_batch(batch_id):
    data = _payload()
    result = StockMutationService().mark_batch(
        batch_id,
        data.get('status'),
        data.get('reason'),
        reference_id=data.get('reference_id'),
    )
    return jsonify({'success': True, 'result': result.to_dict()})


@stock_api_bp.route('/expiry-sweep', methods=['POST'])
def expiry_sweep():
    data = _payload()
    results = StockMutationService().sweep_expired(_optional_datetime(data, 'as_of'))
    return jsonify({
        'success': True,
        'expired_batches': [result.to_dict() for result in results],
        'count': len(results),
    })


@stock_api_bp.route('/warehouses/<int:warehouse_id>/utilization', methods=['GET'])
def warehouse_utilization(warehouse_id):
    snapshot = StockMutationService().utilization_snapshot(warehouse_id)
    return jsonify({'success': True, 'utilization': snapshot.to_dict()})


@stock_api_bp.route('/warehouses/<int:warehouse_id>/recompute', methods=['POST'])
def recompute_warehouse(warehouse_id):
    snapshot = StockMutationService().recompute_utilization(warehouse_id)
    return jsonify({'success': True, 'utilization': snapshot.to_dict()})


@stock_api_bp.route('/products/<int:product_id>/summary', methods=['GET'])
def product_summary(product_id):
    return jsonify({'success': True, 'summary': StockReporter().batch_summary(product_id, _as_of_arg())})


@stock_api_bp.route('/alerts', methods=['GET'])
def stock_alerts():
    alerts = StockReporter().collect_stock_alerts(_as_of_arg())
    severity = request.args.get('severity')
    if severity:
        alerts = [alert for alert in alerts if alert.severity == severity]
    return jsonify({'success': True, 'alerts': [alert.to_dict() for alert in alerts], 'count': len(alerts)})
