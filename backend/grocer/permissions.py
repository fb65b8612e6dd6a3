"""
Role and action definitions for the register core.

WHY: The core does not own user administration; it only needs to know
whether the acting user may perform an action and whether that action
requires a supervisor PIN.

DESIGN PRINCIPLES:
- Roles are ranked (cashier < manager < admin); higher roles inherit lower
- PIN-gated actions require a PIN belonging to an active user at the
  approver level, independent of who is logged in at the terminal
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import ForbiddenError


class Role:
    CASHIER = "cashier"
    MANAGER = "manager"
    ADMIN = "admin"


ROLE_LEVELS = {
    Role.CASHIER: 1,
    Role.MANAGER: 2,
    Role.ADMIN: 3,
}


# Each action is defined as: (code, minimum actor role, PIN approver role or None)
ACTION_DEFINITIONS = [
    ("ADD_LINE", Role.CASHIER, None),
    ("VIEW_LINES", Role.CASHIER, None),
    ("REMOVE_LINE", Role.CASHIER, Role.MANAGER),
    ("CLOSE_SESSION", Role.CASHIER, Role.MANAGER),
    ("RECEIVE_STOCK", Role.CASHIER, None),
    ("ADJUST_STOCK", Role.MANAGER, None),
    ("STOCKTAKE", Role.MANAGER, None),
    ("APPLY_MANUAL_DISCOUNT", Role.CASHIER, None),
    ("FINALIZE_SALE", Role.CASHIER, None),
]

ACTIONS = {code: (actor_role, approver_role) for code, actor_role, approver_role in ACTION_DEFINITIONS}


def role_level(role: str | None) -> int:
    return ROLE_LEVELS.get((role or "").lower(), 0)


def has_role(role: str | None, required: str) -> bool:
    return role_level(role) >= ROLE_LEVELS[required]


def approver_role_for(action: str) -> str | None:
    """Role whose PIN must approve ``action``; None if no PIN is needed."""
    return ACTIONS[action][1]


@dataclass(frozen=True)
class AuthContext:
    """
    Who is acting and under which request.

    Built by the HTTP layer from request headers or by the CLI; services only
    read it.
    """
    user_id: int | None
    role: str | None
    username: str | None = None
    request_id: str | None = None
    extra: dict = field(default_factory=dict)

    def can(self, action: str) -> bool:
        actor_role, _ = ACTIONS[action]
        return self.user_id is not None and has_role(self.role, actor_role)


def require_action(ctx: AuthContext | None, action: str) -> None:
    """Raise ForbiddenError unless ``ctx`` may perform ``action``."""
    if ctx is None or not ctx.can(action):
        raise ForbiddenError(
            f"Not allowed to {action.lower().replace('_', ' ')}",
            {"action": action, "role": ctx.role if ctx else None},
        )
