from .locations import Location
from .inventory import Product, StockEntry, StockMovement
from .customers import Customer, CreditTransaction
from .sales import Sale, SaleLine
from .shifts import Shift
from .auth import User, SessionToken

__all__ = [
    'Location',
    'Product', 'StockEntry', 'StockMovement',
    'Customer', 'CreditTransaction',
    'Sale', 'SaleLine',
    'Shift',
    'User', 'SessionToken',
]
