from .catalog import Product, Service, Employee
from .sales import Sale, SaleItem
from .work_orders import WorkOrder, OSItem, Commission
from .finance import Expense
from .settings import SystemSettings
from .security import AccessSession, PinChallenge, SecurityEvent

__all__ = [
    'Product', 'Service', 'Employee',
    'Sale', 'SaleItem',
    'WorkOrder', 'OSItem', 'Commission',
    'Expense',
    'SystemSettings',
    'AccessSession', 'PinChallenge', 'SecurityEvent',
]
