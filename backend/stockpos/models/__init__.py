from .catalog import Category, Supplier, Product
from .inventory import StockMovement
from .sales import Sale, SaleLine
from .customers import Customer, CreditPayment
from .auth import User, SessionToken

__all__ = [
    'Category', 'Supplier', 'Product',
    'StockMovement',
    'Sale', 'SaleLine',
    'Customer', 'CreditPayment',
    'User', 'SessionToken',
]
