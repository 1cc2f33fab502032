"""Models package - imports all models for the application"""
from ..extensions import db

# Import in dependency order for table creation
from .product import Product
from .warehouse import Warehouse
from .batch import Batch, BatchSource, BatchStatus, TERMINAL_STATUSES
from .stock_movement import MovementType, StockMovement

__all__ = [
    'db',
    'Product',
    'Warehouse',
    'Batch',
    'BatchSource',
    'BatchStatus',
    'TERMINAL_STATUSES',
    'MovementType',
    'StockMovement',
]
