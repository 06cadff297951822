from .connection import Database, Base, get_base
from .models import Supplier, Product, Purchase, PurchaseItem
from .repository import SupplierRepository, ProductRepository, PurchaseRepository

__all__ = [
    'Database',
    'Base',
    'get_base',
    'Supplier',
    'Product',
    'Purchase',
    'PurchaseItem',
    'SupplierRepository',
    'ProductRepository',
    'PurchaseRepository',
]
