import logging

from ...exceptions import InvalidArgument
from ._types import UtilizationSnapshot

logger = logging.getLogger(__name__)


class WarehouseUtilizationTracker:
    """
    Keeps Warehouse.current_utilization equal to the ACTIVE quantity it holds.

    ``adjust`` is only called from inside a stock transaction, next to the batch
    writes that caused the delta. ``recompute`` rebuilds the counter from the
    batches and reports how far the cached value had drifted.
    """

    def __init__(self, catalog):
        self.catalog = catalog

    def _snapshot(self, warehouse, drift=0):
        snapshot = UtilizationSnapshot(
            warehouse_id=warehouse.id,
            capacity=warehouse.capacity or 0,
            current_utilization=warehouse.current_utilization or 0,
            drift=drift,
        )
        if snapshot.capacity_exceeded:
            # Advisory only: physical overrides happen, so this never blocks a write
            logger.warning(
                "CAPACITY: warehouse %s holds %s units over a capacity of %s",
                warehouse.id, snapshot.current_utilization, snapshot.capacity,
            )
        return snapshot

    def _require(self, warehouse_id, refresh=False):
        warehouse = self.catalog.get_warehouse(warehouse_id, refresh=refresh)
        if warehouse is None:
            raise InvalidArgument(f"Warehouse {warehouse_id} not found", warehouse_id=warehouse_id)
        return warehouse

    def snapshot(self, warehouse_id) -> UtilizationSnapshot:
        return self._snapshot(self._require(warehouse_id))

    def adjust(self, warehouse_id, delta: int) -> UtilizationSnapshot:
        self._require(warehouse_id)
        if not delta:
            return self.snapshot(warehouse_id)

        warehouse = self.catalog.adjust_warehouse_utilization(warehouse_id, delta)
        if warehouse.current_utilization < 0:
            # The counter was already wrong before this write; repair it in place
            logger.error(
                "UTILIZATION: warehouse %s counter went negative (%s); reconciling",
                warehouse_id, warehouse.current_utilization,
            )
            return self.recompute(warehouse_id)
        return self._snapshot(warehouse)

    def recompute(self, warehouse_id) -> UtilizationSnapshot:
        previous = self._require(warehouse_id, refresh=True).current_utilization or 0
        warehouse = self.catalog.reconcile_warehouse_utilization(warehouse_id)
        drift = warehouse.current_utilization - previous
        if drift:
            logger.warning(
                f"UTILIZATION: repaired drift of {drift} on warehouse {warehouse_id} "
                f"({previous} -> {warehouse.current_utilization})"
            )
        return self._snapshot(warehouse, drift=drift)
