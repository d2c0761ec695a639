from .users import User
from .inventory import Product
from .invoices import Invoice, InvoiceItem, InvoiceTransaction, DocumentSequence
from .returns import InvoiceReturn, InvoiceReturnItem, CustomerCredit
from .audit import InventoryItemEvent, ActivityLog

__all__ = [
    'User',
    'Product',
    'Invoice', 'InvoiceItem', 'InvoiceTransaction', 'DocumentSequence',
    'InvoiceReturn', 'InvoiceReturnItem', 'CustomerCredit',
    'InventoryItemEvent', 'ActivityLog',
]
