from .catalog import Category, Product
from .inventory import InventoryMovement, ImmutableRecordError, MOVEMENT_TYPES
from .auth import User
from .registers import RegisterSession
from .carts import Cart, CartLine, CART_STATUSES
from .sales import Invoice, InvoiceLine, Payment, PAYMENT_METHODS
from .discounts import DiscountRule
from .documents import MasterLedgerEvent, DocumentSequence

__all__ = [
    'Category', 'Product',
    'InventoryMovement', 'ImmutableRecordError', 'MOVEMENT_TYPES',
    'User',
    'RegisterSession',
    'Cart', 'CartLine', 'CART_STATUSES',
    'Invoice', 'InvoiceLine', 'Payment', 'PAYMENT_METHODS',
    'DiscountRule',
    'MasterLedgerEvent', 'DocumentSequence',
]
