"""
User roles enumeration.

Roles carried in access tokens issued by the auth service.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Back-office staff; may record payments and reverse invoices
        CUSTOMER: Places orders and pays invoices (default role)
    """
    ADMIN = "ADMIN"
    CUSTOMER = "CUSTOMER"
