from .auth import User, Role, UserRole, DEFAULT_ROLES
from .orders import Customer, Item, Order, OrderItem, Estimate, EstimateLine
from .production import Station, ItemProcessingLog
from .print_queue import PrintQueueEntry
from .quickbooks import QuickbooksToken
from .audit import AuditLog

__all__ = [
    'User', 'Role', 'UserRole', 'DEFAULT_ROLES',
    'Customer', 'Item', 'Order', 'OrderItem', 'Estimate', 'EstimateLine',
    'Station', 'ItemProcessingLog',
    'PrintQueueEntry',
    'QuickbooksToken',
    'AuditLog',
]
