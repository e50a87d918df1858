from .catalog import Product, ProductVariant, Location, Customer
from .inventory import StockUnit, StockUnitPair, StockMovement
from .sales import Order, Bill, PaymentEntry

__all__ = [
    'Product', 'ProductVariant', 'Location', 'Customer',
    'StockUnit', 'StockUnitPair', 'StockMovement',
    'Order', 'Bill', 'PaymentEntry',
]
