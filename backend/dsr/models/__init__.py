from .catalog import Product, InventoryItem
from .feeds import DailySale, DailyRefill, CylinderTransaction, StockTransfer, PurchaseOrder
from .ledger import (
    DailyStockRecord,
    ReconciliationRun,
    DELTA_FIELDS,
    OPENING_SOURCE_FROZEN,
    OPENING_SOURCE_CARRY_FORWARD,
    OPENING_SOURCE_COLD_START,
    WAREHOUSE,
)

__all__ = [
    'Product', 'InventoryItem',
    'DailySale', 'DailyRefill', 'CylinderTransaction', 'StockTransfer', 'PurchaseOrder',
    'DailyStockRecord', 'ReconciliationRun',
    'DELTA_FIELDS', 'OPENING_SOURCE_FROZEN', 'OPENING_SOURCE_CARRY_FORWARD', 'OPENING_SOURCE_COLD_START', 'WAREHOUSE',
]
