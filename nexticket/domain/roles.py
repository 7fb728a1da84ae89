# nexticket/domain/roles.py

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet

from nexticket.domain.exceptions import (
    AuthRequiredError,
    RoleMismatchError,
    VendorSuspendedError,
)


class Role(str, Enum):
    USER = "user"
    VENDOR = "vendor"
    ADMIN = "admin"


class Action(str, Enum):
    BROWSE_TICKETS = "browse_tickets"
    CREATE_BOOKING = "create_booking"
    PAY_BOOKING = "pay_booking"
    VIEW_OWN_TRANSACTIONS = "view_own_transactions"
    ADD_TICKET = "add_ticket"
    EDIT_TICKET = "edit_ticket"
    DELETE_TICKET = "delete_ticket"
    DECIDE_BOOKING = "decide_booking"
    VIEW_VENDOR_STATS = "view_vendor_stats"
    VERIFY_TICKET = "verify_ticket"
    ADVERTISE_TICKET = "advertise_ticket"
    MANAGE_USERS = "manage_users"
    RECONCILE_PAYMENTS = "reconcile_payments"


# Every Role must have an entry; tests fail when a new role is added
# without deciding its permissions.
ROLE_PERMISSIONS: Dict[Role, FrozenSet[Action]] = {
    Role.USER: frozenset({
        Action.BROWSE_TICKETS,
        Action.CREATE_BOOKING,
        Action.PAY_BOOKING,
        Action.VIEW_OWN_TRANSACTIONS,
    }),
    Role.VENDOR: frozenset({
        Action.BROWSE_TICKETS,
        Action.ADD_TICKET,
        Action.EDIT_TICKET,
        Action.DELETE_TICKET,
        Action.DECIDE_BOOKING,
        Action.VIEW_VENDOR_STATS,
    }),
    Role.ADMIN: frozenset({
        Action.BROWSE_TICKETS,
        Action.VERIFY_TICKET,
        Action.ADVERTISE_TICKET,
        Action.MANAGE_USERS,
        Action.VIEW_VENDOR_STATS,
        Action.RECONCILE_PAYMENTS,
    }),
}

ROLE_DASHBOARDS: Dict[Role, str] = {
    Role.USER: "/dashboard/user",
    Role.VENDOR: "/dashboard/vendor",
    Role.ADMIN: "/dashboard/admin",
}


@dataclass(frozen=True)
class RoleInfo:
    email: str
    role: Role
    is_fraud: bool = False

    def can(self, action: Action) -> bool:
        if self.is_fraud and self.role is Role.VENDOR:
            return action is Action.BROWSE_TICKETS
        return action in ROLE_PERMISSIONS[self.role]

    @property
    def dashboard(self) -> str:
        return ROLE_DASHBOARDS[self.role]


def parse_role(value: str) -> Role:
    try:
        return Role(value)
    except ValueError as exc:
        raise RoleMismatchError(f"Unknown role: {value!r}") from exc


def ensure_permitted(info: RoleInfo | None, action: Action) -> RoleInfo:
    """
    Refuse the action unless the resolved role grants it.
    Returns the role info so callers can chain ownership checks.
    """
    if info is None:
        raise AuthRequiredError(f"Sign in required for {action.value}")

    if info.is_fraud and info.role is Role.VENDOR and action is not Action.BROWSE_TICKETS:
        raise VendorSuspendedError(f"Vendor {info.email} is suspended")

    if not info.can(action):
        raise RoleMismatchError(
            f"Role {info.role.value} may not {action.value}",
            role=info.role.value,
            action=action.value,
        )
    return info


def ensure_owner(info: RoleInfo, owner_email: str, what: str) -> None:
    if info.email.lower() != (owner_email or "").lower():
        raise RoleMismatchError(f"{info.email} does not own this {what}")
