from enum import Enum

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class MovementType(str, Enum):
    RECEIPT = "receipt"
    DECREASE = "decrease"
    EXPIRED = "expired"
    DAMAGED = "damaged"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"


class StockMovement(db.Model):
    """Append-only ledger: one row per batch touched by a stock mutation."""
    __tablename__ = 'stock_movement'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey('warehouse.id'), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey('stock_batch.id'), nullable=True, index=True)

    movement_type = db.Column(
        db.Enum(
            MovementType,
            name='movement_type',
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            values_callable=lambda members: [m.value for m in members],
            length=16,
        ),
        nullable=False,
        index=True,
    )
    # Signed: positive for receipts/transfers in, negative for deductions
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    reference_id = db.Column(db.String(128), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False, index=True)

    batch = db.relationship('Batch', backref=db.backref('movements', lazy='dynamic'))

    def __repr__(self):
        return f'<StockMovement {self.id}: {self.movement_type.value} {self.quantity}>'
