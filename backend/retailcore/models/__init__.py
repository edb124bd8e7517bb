from .catalog import Product, User, Client, Supplier, PaymentMethod
from .inventory import StockMovement
from .sales import Sale, SaleLine
from .documents import Return, ReturnLine, ReplenishmentOrder, ReplenishmentLine, DocumentSequence
from .alerts import StockAlert

__all__ = [
    'Product', 'User', 'Client', 'Supplier', 'PaymentMethod',
    'StockMovement',
    'Sale', 'SaleLine',
    'Return', 'ReturnLine', 'ReplenishmentOrder', 'ReplenishmentLine', 'DocumentSequence',
    'StockAlert',
]
