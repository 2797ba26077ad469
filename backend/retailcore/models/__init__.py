from .tenancy import Branch, Supplier
from .ledger import LedgerAccount, LedgerEntry
from .inventory import Product, InventoryItem, StockCounter
from .documents import Transfer, TransferItem, AuditEvent, DocumentSequence, HOPayment
from .investors import Investor, InvestorCapital, Distribution, DistributionDetail

__all__ = [
    'Branch', 'Supplier',
    'LedgerAccount', 'LedgerEntry',
    'Product', 'InventoryItem', 'StockCounter',
    'Transfer', 'TransferItem', 'AuditEvent', 'DocumentSequence', 'HOPayment',
    'Investor', 'InvestorCapital', 'Distribution', 'DistributionDetail',
]
