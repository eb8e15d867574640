from .auth import User
from .inventory import Product, StockMovement
from .customers import Customer, CreditPayment
from .sales import Bill, BillItem, BillRefund, BillSequence
from .activity import ActivityLog

__all__ = [
    'User',
    'Product', 'StockMovement',
    'Customer', 'CreditPayment',
    'Bill', 'BillItem', 'BillRefund', 'BillSequence',
    'ActivityLog',
]
