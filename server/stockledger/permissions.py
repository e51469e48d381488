from dataclasses import dataclass
from enum import Enum

from stockledger.errors import PermissionDeniedError


class Role(str, Enum):
    ADMIN = "ADMIN"
    INVENTORY = "INVENTORY"
    PURCHASING = "PURCHASING"
    REQUESTER = "REQUESTER"
    APPROVER = "APPROVER"
    VIEWER = "VIEWER"


class Permission(str, Enum):
    STOCK_READ = "stock:read"
    MOVEMENTS_READ = "movements:read"
    MOVEMENTS_WRITE = "movements:write"
    MOVEMENTS_APPROVE = "movements:approve"
    PR_READ = "pr:read"
    PR_WRITE = "pr:write"
    PR_APPROVE = "pr:approve"
    PO_READ = "po:read"
    PO_WRITE = "po:write"
    PO_APPROVE = "po:approve"
    GRN_READ = "grn:read"
    GRN_WRITE = "grn:write"
    REPORTS_READ = "reports:read"
    VARIANTS_MERGE = "variants:merge"


PERMISSION_DEFINITIONS: list[tuple[Permission, str]] = [
    (Permission.STOCK_READ, "View stock balances"),
    (Permission.MOVEMENTS_READ, "View movements"),
    (Permission.MOVEMENTS_WRITE, "Create and edit movements"),
    (Permission.MOVEMENTS_APPROVE, "Post movements"),
    (Permission.PR_READ, "View purchase requests"),
    (Permission.PR_WRITE, "Create and edit purchase requests"),
    (Permission.PR_APPROVE, "Approve purchase requests"),
    (Permission.PO_READ, "View purchase orders"),
    (Permission.PO_WRITE, "Create and edit purchase orders"),
    (Permission.PO_APPROVE, "Approve purchase orders"),
    (Permission.GRN_READ, "View goods receipts"),
    (Permission.GRN_WRITE, "Receive goods"),
    (Permission.REPORTS_READ, "View stock reports"),
    (Permission.VARIANTS_MERGE, "Merge duplicate variants"),
]

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ADMIN: frozenset(Permission),
    Role.INVENTORY: frozenset(
        {
            Permission.STOCK_READ,
            Permission.MOVEMENTS_READ,
            Permission.MOVEMENTS_WRITE,
            Permission.MOVEMENTS_APPROVE,
            Permission.PR_READ,
            Permission.PR_WRITE,
            Permission.PO_READ,
            Permission.GRN_READ,
            Permission.GRN_WRITE,
            Permission.REPORTS_READ,
        }
    ),
    Role.PURCHASING: frozenset(
        {
            Permission.STOCK_READ,
            Permission.PR_READ,
            Permission.PO_READ,
            Permission.PO_WRITE,
            Permission.GRN_READ,
            Permission.GRN_WRITE,
        }
    ),
    Role.REQUESTER: frozenset(
        {
            Permission.STOCK_READ,
            Permission.MOVEMENTS_READ,
            Permission.PR_READ,
            Permission.PR_WRITE,
        }
    ),
    Role.APPROVER: frozenset(
        {
            Permission.STOCK_READ,
            Permission.MOVEMENTS_READ,
            Permission.MOVEMENTS_APPROVE,
            Permission.PR_READ,
            Permission.PR_APPROVE,
            Permission.PO_READ,
            Permission.PO_APPROVE,
        }
    ),
    Role.VIEWER: frozenset(
        {
            Permission.STOCK_READ,
            Permission.MOVEMENTS_READ,
            Permission.PR_READ,
            Permission.PO_READ,
            Permission.REPORTS_READ,
        }
    ),
}

# Roles that receive "submitted for approval" notifications.
APPROVER_ROLES = (Role.ADMIN.value, Role.APPROVER.value)


@dataclass(frozen=True)
class Actor:
    """An already-authenticated caller."""

    id: int
    role: str
    name: str = ""


def has_permission(role: str, permission: str) -> bool:
    try:
        granted = ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return False
    return Permission(permission) in granted


def ensure_permission(actor: Actor | None, permission: Permission | str) -> None:
    if actor is None:
        raise PermissionDeniedError("Authentication required.")
    key = Permission(permission)
    if not has_permission(actor.role, key):
        raise PermissionDeniedError(f"Role {actor.role} is not allowed to {key.value}.")
