from .auth import User, Role, RolePermission, SessionToken
from .inventory import Product, Order, OrderItem, InventoryTransaction
from .finance import TaxRule, Expense, Invoice
from .approvals import ApprovalRequest
from .audit import AuditLog

__all__ = [
    'User', 'Role', 'RolePermission', 'SessionToken',
    'Product', 'Order', 'OrderItem', 'InventoryTransaction',
    'TaxRule', 'Expense', 'Invoice',
    'ApprovalRequest',
    'AuditLog',
]
