"""
Security guards for role-based and tenant-based access control.

`is_permitted(role, operation)` is the single policy table consulted by every
core operation before it mutates anything.
"""

import enum
from typing import Dict, FrozenSet

from fastapi import Depends

from fleetcore.core.dependencies import get_current_actor
from fleetcore.core.exceptions import Forbidden
from fleetcore.models.enums import UserRole
from fleetcore.services.identity import Actor


class Operation(str, enum.Enum):
    """Operations gated by role."""
    ASSIGNMENT_OPEN = "assignment.open"
    ASSIGNMENT_CLOSE = "assignment.close"
    ASSIGNMENT_REASSIGN = "assignment.reassign"
    ASSIGNMENT_READ_ANY = "assignment.read_any"
    ASSIGNMENT_READ_OWN = "assignment.read_own"
    STOCK_READ = "stock.read"
    STOCK_WRITE = "stock.write"
    STOCK_TRANSFER_REQUEST = "stock.transfer_request"
    STOCK_TRANSFER_RESPOND = "stock.transfer_respond"
    VEHICLE_READ = "vehicle.read"
    VEHICLE_CREATE = "vehicle.create"
    VEHICLE_EDIT = "vehicle.edit"
    VEHICLE_DELETE = "vehicle.delete"
    VEHICLE_TELEMETRY = "vehicle.telemetry"
    USER_READ = "user.read"
    USER_CREATE_TECHNICIAN = "user.create_technician"
    USER_CREATE_MANAGER = "user.create_manager"
    USER_DELETE = "user.delete"
    CATALOG_WRITE = "catalog.write"
    QUOTA_READ = "quota.read"
    INTEGRITY_AUDIT = "integrity.audit"
    TENANT_SETTINGS_READ = "tenant_settings.read"
    TENANT_SETTINGS_WRITE = "tenant_settings.write"


_TECHNICIAN_OPERATIONS = frozenset({
    Operation.ASSIGNMENT_READ_OWN,
    Operation.STOCK_READ,
    Operation.STOCK_TRANSFER_RESPOND,
    Operation.VEHICLE_READ,
    Operation.VEHICLE_TELEMETRY,
})

_MANAGER_OPERATIONS = _TECHNICIAN_OPERATIONS | frozenset({
    Operation.ASSIGNMENT_OPEN,
    Operation.ASSIGNMENT_CLOSE,
    Operation.ASSIGNMENT_REASSIGN,
    Operation.ASSIGNMENT_READ_ANY,
    Operation.STOCK_WRITE,
    Operation.STOCK_TRANSFER_REQUEST,
    Operation.VEHICLE_CREATE,
    Operation.VEHICLE_EDIT,
    Operation.VEHICLE_DELETE,
    Operation.USER_READ,
    Operation.USER_CREATE_TECHNICIAN,
    Operation.CATALOG_WRITE,
    Operation.QUOTA_READ,
    Operation.TENANT_SETTINGS_READ,
})

_ADMIN_OPERATIONS = _MANAGER_OPERATIONS | frozenset({
    Operation.USER_CREATE_MANAGER,
    Operation.USER_DELETE,
    Operation.INTEGRITY_AUDIT,
    Operation.TENANT_SETTINGS_WRITE,
})

POLICY: Dict[UserRole, FrozenSet[Operation]] = {
    UserRole.TECHNICIAN: _TECHNICIAN_OPERATIONS,
    UserRole.MANAGER: _MANAGER_OPERATIONS,
    UserRole.ADMIN: _ADMIN_OPERATIONS,
    UserRole.OWNER: _ADMIN_OPERATIONS,
}


def is_permitted(role: UserRole, operation: Operation) -> bool:
    """Return True if `role` may perform `operation`."""
    return operation in POLICY.get(role, frozenset())


def enforce(actor: Actor, operation: Operation) -> None:
    """
    Raise Forbidden unless the actor's role permits the operation.

    Args:
        actor: Resolved caller
        operation: Operation about to be performed

    Raises:
        Forbidden: If the role is insufficient
    """
    if not is_permitted(actor.role, operation):
        raise Forbidden(
            f"Access denied. Role {actor.role.value} may not perform {operation.value}",
            details={"role": actor.role.value, "operation": operation.value}
        )


def require_operation(operation: Operation):
    """
    Dependency factory for operation-based access control.

    Usage:
        @router.post("/assignments")
        async def open_assignment(actor: Actor = Depends(require_operation(Operation.ASSIGNMENT_OPEN))):
            ...
    """
    async def operation_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        enforce(actor, operation)
        return actor

    return operation_checker
