from .sites import Site, Stall, STALL_TYPES
from .inventory import StockItem
from .movements import StockMovement, MOVEMENT_TYPES
from .sales import SaleTransaction, SaleTransactionLine, SaleActive, SaleDeleted

__all__ = [
    'Site', 'Stall', 'STALL_TYPES',
    'StockItem',
    'StockMovement', 'MOVEMENT_TYPES',
    'SaleTransaction', 'SaleTransactionLine', 'SaleActive', 'SaleDeleted',
]
