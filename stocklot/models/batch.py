from enum import Enum

from ..exceptions import InvalidArgument, InvalidQuantity
from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class BatchStatus(str, Enum):
    ACTIVE = "active"
    DEPLETED = "depleted"
    EXPIRED = "expired"
    DAMAGED = "damaged"

    @property
    def is_terminal(self) -> bool:
        return self is not BatchStatus.ACTIVE


TERMINAL_STATUSES = frozenset({BatchStatus.DEPLETED, BatchStatus.EXPIRED, BatchStatus.DAMAGED})


class BatchSource(str, Enum):
    PURCHASE = "purchase"
    MANUAL = "manual"
    TRANSFER_IN = "transfer_in"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Batch(db.Model):
    """
    A discretely received lot of one product in one warehouse.

    Each batch keeps its own unit cost and dates for COGS and audit. Batches are
    never deleted: once drained or written off they stay in a terminal status.
    """
    __tablename__ = 'stock_batch'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey('warehouse.id'), nullable=False, index=True)

    # Globally unique; second key of the FIFO order
    batch_number = db.Column(db.String(64), unique=True, nullable=False)

    quantity_remaining = db.Column(db.Integer, nullable=False)
    original_quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(12, 2), nullable=False)

    received_date = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    status = db.Column(
        db.Enum(
            BatchStatus,
            name='batch_status',
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            values_callable=_enum_values,
            length=16,
        ),
        nullable=False,
        default=BatchStatus.ACTIVE,
        index=True,
    )

    # Provenance
    source_type = db.Column(
        db.Enum(
            BatchSource,
            name='batch_source',
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            values_callable=_enum_values,
            length=16,
        ),
        nullable=False,
        default=BatchSource.MANUAL,
    )
    source_batch_id = db.Column(db.Integer, db.ForeignKey('stock_batch.id'), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    reference_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=TimezoneUtils.utc_now,
        onupdate=TimezoneUtils.utc_now,
        nullable=False,
    )
    version = db.Column(db.Integer, nullable=False)

    product = db.relationship('Product', backref=db.backref('batches', lazy='dynamic'))
    warehouse = db.relationship('Warehouse', backref=db.backref('batches', lazy='dynamic'))
    source_batch = db.relationship('Batch', remote_side=[id])

    __mapper_args__ = {'version_id_col': version}

    __table_args__ = (
        db.CheckConstraint('quantity_remaining >= 0', name='check_batch_remaining_non_negative'),
        db.CheckConstraint('original_quantity > 0', name='check_batch_original_positive'),
        db.CheckConstraint('quantity_remaining <= original_quantity', name='check_batch_remaining_not_exceeds_original'),
        db.CheckConstraint('unit_cost >= 0', name='check_batch_unit_cost_non_negative'),
        db.Index('ix_stock_batch_fifo', 'product_id', 'warehouse_id', 'status', 'received_date', 'batch_number'),
    )

    def __repr__(self):
        return f'<Batch {self.batch_number}: {self.quantity_remaining}/{self.original_quantity} {self.status.value}>'

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def consumed_quantity(self):
        return self.original_quantity - self.quantity_remaining

    def apply_quantity(self, new_quantity: int, new_status: BatchStatus) -> None:
        """
        Write a deduction result onto this batch.

        Quantities only go down, ACTIVE is the only status that accepts writes,
        and a batch holds a positive quantity exactly while it is ACTIVE.
        """
        new_status = BatchStatus(new_status)
        if self.is_terminal:
            raise InvalidArgument(
                f"Batch {self.batch_number} is {self.status.value} and accepts no further deductions",
                batch_id=self.id,
                status=self.status.value,
            )
        if not isinstance(new_quantity, int) or isinstance(new_quantity, bool):
            raise InvalidQuantity(f"Batch quantity must be an integer, got {new_quantity!r}")
        if new_quantity < 0 or new_quantity > self.quantity_remaining:
            raise InvalidQuantity(
                f"Batch {self.batch_number} cannot move from {self.quantity_remaining} to {new_quantity}",
                batch_id=self.id,
            )
        if new_quantity == 0 and new_status is BatchStatus.ACTIVE:
            new_status = BatchStatus.DEPLETED
        if new_quantity > 0 and new_status.is_terminal:
            raise InvalidArgument(
                f"Batch {self.batch_number} cannot become {new_status.value} with {new_quantity} units left",
                batch_id=self.id,
            )
        self.quantity_remaining = new_quantity
        self.status = new_status
