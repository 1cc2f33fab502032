from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class Warehouse(db.Model):
    """
    A stocking location with a unit capacity.

    current_utilization is a cached value: the sum of quantity_remaining over the
    ACTIVE batches held here. It is only written inside the same transaction as the
    batch mutation that changed it, and can be rebuilt with a recompute.
    """
    __tablename__ = 'warehouse'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(255), nullable=True)

    capacity = db.Column(db.Integer, nullable=False, default=0)
    current_utilization = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=TimezoneUtils.utc_now,
        onupdate=TimezoneUtils.utc_now,
        nullable=False,
    )

    __table_args__ = (
        db.CheckConstraint('capacity >= 0', name='check_warehouse_capacity_non_negative'),
    )

    @property
    def utilization_percentage(self):
        """Share of capacity in use; None when capacity is zero (unbounded)."""
        if not self.capacity:
            return None
        return round((self.current_utilization or 0) / self.capacity * 100, 1)

    @property
    def is_over_capacity(self):
        return bool(self.capacity) and (self.current_utilization or 0) > self.capacity

    def __repr__(self):
        return f'<Warehouse {self.id}: {self.current_utilization}/{self.capacity}>'
