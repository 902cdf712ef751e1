"""
Inventory services: order-driven stock deduction and periodic scans.
"""

from app.services.inventory.deduction import (
    AppliedDeduction,
    DeductionResult,
    InventoryDeductionEngine,
    LineItem,
    Shortage,
    deduction_unit,
)
from app.services.inventory.scans import (
    ExpiringLotAlert,
    InventoryScanner,
    LowStockAlert,
)

__all__ = [
    "InventoryDeductionEngine",
    "InventoryScanner",
    "LineItem",
    "AppliedDeduction",
    "DeductionResult",
    "Shortage",
    "LowStockAlert",
    "ExpiringLotAlert",
    "deduction_unit",
]
