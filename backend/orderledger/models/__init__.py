from .tenancy import Organization, User
from .customers import Client
from .inventory import Product, StockMovement
from .orders import Order, OrderLine, OrderEvent, OrderNumberSequence

__all__ = [
    'Organization', 'User',
    'Client',
    'Product', 'StockMovement',
    'Order', 'OrderLine', 'OrderEvent', 'OrderNumberSequence',
]
