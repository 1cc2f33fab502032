from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils


class Product(db.Model):
    """A sellable product. Stock for it lives in batches, never on this row."""
    __tablename__ = 'product'

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(160), nullable=False)

    # Default shelf life applied to new batches when the caller gives no expiry
    shelf_life_days = db.Column(db.Integer, nullable=True)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=TimezoneUtils.utc_now, nullable=False)

    __table_args__ = (
        db.CheckConstraint('shelf_life_days IS NULL OR shelf_life_days > 0', name='check_product_shelf_life_positive'),
        db.CheckConstraint('min_stock_level >= 0', name='check_product_min_stock_non_negative'),
    )

    def __repr__(self):
        return f'<Product {self.id}: {self.sku}>'
