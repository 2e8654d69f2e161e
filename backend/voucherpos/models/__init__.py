from .retailers import Agent, CommissionGroup, CommissionGroupRate, Retailer, Terminal
from .vouchers import VoucherType, VoucherInventory
from .sales import Sale, LedgerTransaction
from .bill_payments import BillPayment

__all__ = [
    'Agent', 'CommissionGroup', 'CommissionGroupRate', 'Retailer', 'Terminal',
    'VoucherType', 'VoucherInventory',
    'Sale', 'LedgerTransaction',
    'BillPayment',
]
