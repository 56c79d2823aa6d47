from .reference import Currency, Branch, AccountingPeriod
from .ledger import BranchOpeningBalance, BranchTransfer, Transaction
from .audit import LedgerAuditEvent

__all__ = [
    'Currency', 'Branch', 'AccountingPeriod',
    'BranchOpeningBalance', 'BranchTransfer', 'Transaction',
    'LedgerAuditEvent',
]
