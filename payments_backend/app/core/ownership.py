"""
Ownership checks for order-scoped resources.

Admins can access everything; customers only resources tied to their own
orders.
"""

from payments_backend.app.core.exceptions import InsufficientPermissionsError
from payments_backend.app.models.enums import UserRole


def verify_ownership(resource_owner_id: str, current_user: dict) -> bool:
    """Verify that the current user owns the resource."""
    if current_user.get("role") == UserRole.ADMIN.value:
        return True
    return str(current_user.get("user_id")) == str(resource_owner_id)


class OwnershipGuard:
    """
    Class-based ownership guard.

    Usage:
        order = await orders.get_order(invoice.order_id)
        OwnershipGuard.enforce(order.user_id, current_user, "invoice")
    """

    @staticmethod
    def enforce(
        resource_owner_id: str,
        current_user: dict,
        resource_name: str = "resource"
    ):
        """
        Enforce ownership validation.

        Raises:
            InsufficientPermissionsError: caller neither owns the resource nor is admin
        """
        if not verify_ownership(resource_owner_id, current_user):
            raise InsufficientPermissionsError(
                f"Access denied. You do not have permission to access this {resource_name}.",
                details={"resource": resource_name}
            )
