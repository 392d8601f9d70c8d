"""
Permission System Constants and Definitions

WHY: Centralized permission codes ensure routes, CLI and role seeding agree.

        "VIEW_TAX_RULES",
        "VIEW_REPORTS",
- Permissions are granular (one action per permission)
- Default role mappings follow principle of least privilege
- Admin has all permissions by default
- Approving is separated from requesting: staff create, managers approve
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    APPROVALS = "APPROVALS"
    INVENTORY = "INVENTORY"
    FINANCE = "FINANCE"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # APPROVAL PERMISSIONS
    (
        "VIEW_APPROVALS",
        "View Approvals",
        "List and inspect approval requests",
        PermissionCategory.APPROVALS
    ),
    (
        "CREATE_APPROVAL_REQUESTS",
        "Create Approval Requests",
        "Submit an approval request for an existing order, product or expense",
        PermissionCategory.APPROVALS
    ),
    (
        "APPROVE_REQUESTS",
        "Approve Requests",
        "Approve or reject pending requests (executes stock and invoice effects)",
        PermissionCategory.APPROVALS
    ),

    # INVENTORY PERMISSIONS
    (
        "VIEW_PRODUCTS",
        "View Products",
        "View products, orders and stock movements",
        PermissionCategory.INVENTORY
    ),
    (
        "CREATE_PRODUCTS",
        "Create Products",
        "Register new products",
        PermissionCategory.INVENTORY
    ),
    (
        "CREATE_ORDERS",
        "Create Orders",
        "Submit import/export orders for approval",
        PermissionCategory.INVENTORY
    ),

    # FINANCE PERMISSIONS
    (
        "VIEW_EXPENSES",
        "View Expenses",
        "List recorded expenses",
        PermissionCategory.FINANCE
    ),
    (
        "CREATE_EXPENSES",
        "Create Expenses",
        "Record expenses for approval",
        PermissionCategory.FINANCE
    ),
    (
        "VIEW_INVOICES",
        "View Invoices",
        "List and inspect invoices",
        PermissionCategory.FINANCE
    ),
    (
        "VIEW_TAX_RULES",
        "View Tax Rules",
        "Look up tax rates",
        PermissionCategory.FINANCE
    ),
    (
        "VIEW_REPORTS",
        "View Reports",
        "Revenue and trade statistics over approved activity",
        PermissionCategory.FINANCE
    ),

    # SYSTEM PERMISSIONS
    (
        "VIEW_AUDIT_LOG",
        "View Audit Log",
        "Read the audit trail",
        PermissionCategory.SYSTEM
    ),
]

PERMISSION_CODES = {code for code, _, _, _ in PERMISSION_DEFINITIONS}


# =============================================================================
# DEFAULT ROLES
# =============================================================================

DEFAULT_ROLES = {
    "admin": "Full access",
    "manager": "Approves requests and reviews finance",
    "staff": "Creates orders, products and expenses",
}

DEFAULT_ROLE_PERMISSIONS = {
    "admin": sorted(PERMISSION_CODES),
    "manager": [
        "VIEW_APPROVALS",
        "APPROVE_REQUESTS",
        "VIEW_PRODUCTS",
        "VIEW_EXPENSES",
        "VIEW_INVOICES",
        "VIEW_TAX_RULES",
        "VIEW_REPORTS",
        "VIEW_AUDIT_LOG",
    ],
    "staff": [
        "VIEW_APPROVALS",
        "CREATE_APPROVAL_REQUESTS",
        "VIEW_PRODUCTS",
        "CREATE_PRODUCTS",
        "CREATE_ORDERS",
        "VIEW_EXPENSES",
        "CREATE_EXPENSES",
        "VIEW_TAX_RULES",
    ],
}
