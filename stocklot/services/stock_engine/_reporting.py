"""
Read-only stock reporting: batch summaries, expiring stock and alerts.

Nothing here takes locks or writes; figures come straight from the batch rows.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ...extensions import db
from ...models import Batch, BatchStatus, Product, Warehouse
from ...utils.timezone_utils import TimezoneUtils
from ._catalog import SqlBatchCatalog
from ._expiry import classify, days_until_expiry
from ._settings import StockSettings, current_settings
from ._types import FreshnessState, to_money

logger = logging.getLogger(__name__)

WAREHOUSE_WARNING_PCT = 80
WAREHOUSE_CRITICAL_PCT = 95
EXPIRY_CRITICAL_DAYS = 7
EXPIRY_WARNING_DAYS = 14


@dataclass
class StockAlert:
    """A single advisory for the alerting UI"""
    type: str  # low_stock, expiring_soon, expired, warehouse_full
    severity: str  # info, warning, critical
    title: str
    message: str
    entity_type: str
    entity_id: int
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'severity': self.severity,
            'title': self.title,
            'message': self.message,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'details': self.details,
        }


class StockReporter:
    def __init__(self, catalog=None, *, settings: Optional[StockSettings] = None):
        self.catalog = catalog or SqlBatchCatalog(db.session)
        self.session = getattr(self.catalog, "session", None) or db.session
        self.settings = settings or current_settings()

    def _as_of(self, as_of):
        return TimezoneUtils.ensure_timezone_aware(as_of) or TimezoneUtils.utc_now()

    def batch_view(self, batch: Batch, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """Serialise a batch with its freshness as of ``as_of``."""
        as_of = self._as_of(as_of)
        tz_name = self.settings.business_timezone
        return {
            'id': batch.id,
            'batch_number': batch.batch_number,
            'product_id': batch.product_id,
            'warehouse_id': batch.warehouse_id,
            'quantity_remaining': batch.quantity_remaining,
            'original_quantity': batch.original_quantity,
            'unit_cost': str(to_money(batch.unit_cost)),
            'received_date': TimezoneUtils.format_datetime_for_api(batch.received_date),
            'expiry_date': TimezoneUtils.format_datetime_for_api(batch.expiry_date),
            'status': batch.status.value,
            'source_type': batch.source_type.value,
            'source_batch_id': batch.source_batch_id,
            'days_until_expiry': days_until_expiry(batch.expiry_date, as_of, tz_name),
            'freshness': classify(batch, as_of, self.settings.expiring_soon_days, tz_name).value,
        }

    def list_batches(self, *, product_id=None, warehouse_id=None, statuses=None, as_of=None) -> List[Dict[str, Any]]:
        as_of = self._as_of(as_of)
        batches = self.catalog.list_batches(product_id=product_id, warehouse_id=warehouse_id, statuses=statuses)
        return [self.batch_view(batch, as_of) for batch in batches]

    def batch_summary(self, product_id: int, as_of: Optional[datetime] = None) -> Dict[str, Any]:
        """FIFO summary for one product across all warehouses."""
        as_of = self._as_of(as_of)
        tz_name = self.settings.business_timezone
        batches = self.catalog.list_batches(product_id=product_id)
        active = [batch for batch in batches if batch.status is BatchStatus.ACTIVE]

        states = [classify(batch, as_of, self.settings.expiring_soon_days, tz_name) for batch in active]
        received = [TimezoneUtils.ensure_timezone_aware(batch.received_date) for batch in active]
        total_stock = sum(batch.quantity_remaining for batch in active)
        inventory_value = sum(
            (to_money(batch.unit_cost) * batch.quantity_remaining for batch in active),
            Decimal("0.00"),
        )

        by_warehouse: Dict[int, int] = {}
        for batch in active:
            by_warehouse[batch.warehouse_id] = by_warehouse.get(batch.warehouse_id, 0) + batch.quantity_remaining

        average_age = None
        if received:
            average_age = round(sum((as_of - value).days for value in received) / len(received), 1)

        return {
            'product_id': product_id,
            'as_of': TimezoneUtils.format_datetime_for_api(as_of),
            'total_stock': total_stock,
            'active_batches': len(active),
            'depleted_batches': sum(1 for batch in batches if batch.status is BatchStatus.DEPLETED),
            'expired_batches': sum(1 for batch in batches if batch.status is BatchStatus.EXPIRED),
            'damaged_batches': sum(1 for batch in batches if batch.status is BatchStatus.DAMAGED),
            'past_expiry_batches': sum(1 for state in states if state is FreshnessState.EXPIRED),
            'expiring_soon_batches': sum(1 for state in states if state is FreshnessState.EXPIRING_SOON),
            'oldest_received': TimezoneUtils.format_datetime_for_api(min(received)) if received else None,
            'newest_received': TimezoneUtils.format_datetime_for_api(max(received)) if received else None,
            'average_batch_age_days': average_age,
            'inventory_value': str(to_money(inventory_value)),
            'weighted_average_cost': str(to_money(inventory_value / total_stock)) if total_stock else None,
            'by_warehouse': [
                {'warehouse_id': warehouse_id, 'quantity': quantity}
                for warehouse_id, quantity in sorted(by_warehouse.items())
            ],
        }

    def expiring_batches(self, days: Optional[int] = None, as_of: Optional[datetime] = None,
                         *, warehouse_id=None) -> List[Dict[str, Any]]:
        """ACTIVE batches whose expiry falls within ``days`` calendar days (soonest first)."""
        as_of = self._as_of(as_of)
        days = self.settings.expiring_soon_days if days is None else days
        tz_name = self.settings.business_timezone
        rows = []
        for batch in self.catalog.list_batches(warehouse_id=warehouse_id, statuses=[BatchStatus.ACTIVE]):
            remaining = days_until_expiry(batch.expiry_date, as_of, tz_name)
            if remaining is None or remaining < 0 or remaining > days:
                continue
            rows.append(self.batch_view(batch, as_of))
        rows.sort(key=lambda row: (row['days_until_expiry'], row['batch_number']))
        return rows

    def collect_stock_alerts(self, as_of: Optional[datetime] = None) -> List[StockAlert]:
        as_of = self._as_of(as_of)
        tz_name = self.settings.business_timezone
        alerts: List[StockAlert] = []

        active = self.catalog.list_batches(statuses=[BatchStatus.ACTIVE])
        stock_by_product: Dict[int, int] = {}
        for batch in active:
            stock_by_product[batch.product_id] = stock_by_product.get(batch.product_id, 0) + batch.quantity_remaining

        products = self.session.query(Product).filter(Product.min_stock_level > 0).order_by(Product.id).all()
        for product in products:
            stock = stock_by_product.get(product.id, 0)
            if stock > product.min_stock_level:
                continue
            if stock == 0:
                severity = 'critical'
            elif stock <= product.min_stock_level * 0.5:
                severity = 'warning'
            else:
                severity = 'info'
            alerts.append(StockAlert(
                type='low_stock',
                severity=severity,
                title='Low Stock Alert',
                message=f'Product "{product.name}" has low stock: {stock} units (minimum: {product.min_stock_level})',
                entity_type='product',
                entity_id=product.id,
                details={'stock': stock, 'min_stock_level': product.min_stock_level},
            ))

        for batch in active:
            remaining = days_until_expiry(batch.expiry_date, as_of, tz_name)
            if remaining is None:
                continue
            if remaining < 0:
                alerts.append(StockAlert(
                    type='expired',
                    severity='critical',
                    title='Expired Items',
                    message=f'Batch {batch.batch_number} is past its expiry date '
                            f'({batch.quantity_remaining} units still active)',
                    entity_type='batch',
                    entity_id=batch.id,
                    details={'days_until_expiry': remaining, 'quantity': batch.quantity_remaining},
                ))
            elif remaining <= self.settings.expiring_soon_days:
                if remaining <= EXPIRY_CRITICAL_DAYS:
                    severity = 'critical'
                elif remaining <= EXPIRY_WARNING_DAYS:
                    severity = 'warning'
                else:
                    severity = 'info'
                alerts.append(StockAlert(
                    type='expiring_soon',
                    severity=severity,
                    title='Expiring Soon',
                    message=f'Batch {batch.batch_number} expires in {remaining} days',
                    entity_type='batch',
                    entity_id=batch.id,
                    details={'days_until_expiry': remaining, 'quantity': batch.quantity_remaining},
                ))

        for warehouse in self.session.query(Warehouse).order_by(Warehouse.id).all():
            percentage = warehouse.utilization_percentage
            if percentage is None or percentage < WAREHOUSE_WARNING_PCT:
                continue
            alerts.append(StockAlert(
                type='warehouse_full',
                severity='critical' if percentage >= WAREHOUSE_CRITICAL_PCT else 'warning',
                title='Warehouse Capacity Alert',
                message=f'Warehouse "{warehouse.name}" is at {round(percentage)}% capacity',
                entity_type='warehouse',
                entity_id=warehouse.id,
                details={'capacity': warehouse.capacity, 'current_utilization': warehouse.current_utilization},
            ))

        logger.debug(f"ALERTS: collected {len(alerts)} stock alerts")
        return alerts
