from .tenancy import Organization, Store
from .auth import User
from .customers import Customer
from .inventory import Product, StockMovement
from .sales import PaymentMethod, Sale, SaleItem, SalePayment

__all__ = [
    'Organization', 'Store',
    'User',
    'Customer',
    'Product', 'StockMovement',
    'PaymentMethod', 'Sale', 'SaleItem', 'SalePayment',
]
