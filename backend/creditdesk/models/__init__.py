from .customers import Customer
from .inventory import Product, InventoryTransaction
from .credit import CreditTransaction, CreditTransactionLine
from .returns import Order, OrderLine, ReturnReason, ReturnCase, ReturnLine
from .documents import DocumentSequence, LedgerEvent

__all__ = [
    'Customer',
    'Product', 'InventoryTransaction',
    'CreditTransaction', 'CreditTransactionLine',
    'Order', 'OrderLine', 'ReturnReason', 'ReturnCase', 'ReturnLine',
    'DocumentSequence', 'LedgerEvent',
]
