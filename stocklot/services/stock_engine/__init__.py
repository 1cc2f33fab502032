"""
Stock Engine - Canonical Entry Point

Batch lifecycle and FIFO allocation. Every change to batch quantities goes
through StockMutationService; reads for dashboards go through StockReporter.
"""

from ...exceptions import (
    BatchNotFound,
    ConcurrencyConflict,
    InsufficientStock,
    InvalidArgument,
    InvalidQuantity,
    InvalidTransfer,
    RetryableInfraError,
    StockEngineError,
)
from ._allocator import FIFOAllocator, validate_quantity
from ._batch_numbers import BatchNumberGenerator, generate_batch_number
from ._catalog import BatchCatalog, SqlBatchCatalog
from ._core import StockMutationService, init_stock_engine
from ._expiry import classify, days_until_expiry
from ._locks import KeyedLockRegistry
from ._reporting import StockAlert, StockReporter
from ._settings import StockSettings, current_settings
from ._transaction import stock_transaction
from ._types import (
    AdjustmentKind,
    AllocationLine,
    AllocationRequest,
    AllocationResult,
    AllocationStrategy,
    CreatedBatch,
    FreshnessState,
    MutationResult,
    SaleLine,
    TransferResult,
    UtilizationSnapshot,
)
from ._utilization import WarehouseUtilizationTracker

__all__ = [
    'AdjustmentKind',
    'AllocationLine',
    'AllocationRequest',
    'AllocationResult',
    'AllocationStrategy',
    'BatchCatalog',
    'BatchNotFound',
    'BatchNumberGenerator',
    'ConcurrencyConflict',
    'CreatedBatch',
    'FIFOAllocator',
    'FreshnessState',
    'InsufficientStock',
    'InvalidArgument',
    'InvalidQuantity',
    'InvalidTransfer',
    'KeyedLockRegistry',
    'MutationResult',
    'RetryableInfraError',
    'SaleLine',
    'SqlBatchCatalog',
    'StockAlert',
    'StockEngineError',
    'StockMutationService',
    'StockReporter',
    'StockSettings',
    'TransferResult',
    'UtilizationSnapshot',
    'WarehouseUtilizationTracker',
    'classify',
    'current_settings',
    'days_until_expiry',
    'generate_batch_number',
    'init_stock_engine',
    'stock_transaction',
    'validate_quantity',
]
