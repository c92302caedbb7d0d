from .inventory import Item, StockBatch, InventoryMovement, ITEM_KIND_STOCK, ITEM_KIND_SERVICE, ITEM_KINDS
from .sales import SaleTransaction, SaleLine, Payment, SaleReturn, SaleReturnLine
from .accounts import LedgerEntry
from .counterparties import Customer, Supplier, CounterpartyTransaction
from .documents import Quotation, QuotationLine, Purchase, PurchaseLine, DocumentSequence
from .audit import AuditEvent, ErrorLog

__all__ = [
    'Item', 'StockBatch', 'InventoryMovement', 'ITEM_KIND_STOCK', 'ITEM_KIND_SERVICE', 'ITEM_KINDS',
    'SaleTransaction', 'SaleLine', 'Payment', 'SaleReturn', 'SaleReturnLine',
    'LedgerEntry',
    'Customer', 'Supplier', 'CounterpartyTransaction',
    'Quotation', 'QuotationLine', 'Purchase', 'PurchaseLine', 'DocumentSequence',
    'AuditEvent', 'ErrorLog',
]
