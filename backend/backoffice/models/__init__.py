from .tenancy import Branch, Warehouse, User
from .ledger import Account, LedgerEntry
from .sales import Sale, SaleLine, CustomerPayment, PaymentApplication
from .customers import CustomerBalance
from .documents import InvoiceSequence

__all__ = [
    'Branch', 'Warehouse', 'User',
    'Account', 'LedgerEntry',
    'Sale', 'SaleLine', 'CustomerPayment', 'PaymentApplication',
    'CustomerBalance',
    'InvoiceSequence',
]
