# Overview: Service-layer operations for staff users and PIN approval.

"""
Staff and PIN Service

WHY: Every ledger write is attributable to a user, and destructive register
actions (removing a line, closing a session) need a supervisor PIN.

SECURITY NOTES:
- PINs hashed with bcrypt (cost from BCRYPT_ROUNDS, default 12)
- PINs are 4 to 8 digits
- verify_pin never reveals which user a PIN belongs to unless it matches
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..errors import ConflictError, ForbiddenError, NotFoundError, PinRequiredError, ValidationError
from ..extensions import db
from ..models import User
from ..permissions import AuthContext, ROLE_LEVELS, has_role


_PIN_RE = re.compile(r"^\d{4,8}$")


def validate_pin_format(pin: str) -> None:
    if not isinstance(pin, str) or not _PIN_RE.match(pin):
        raise ValidationError("PIN must be 4 to 8 digits")


def hash_pin(pin: str) -> str:
    """Hash a PIN with bcrypt. Format is validated first."""
    validate_pin_format(pin)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(pin.encode("utf-8"), salt)
    return hashed.decode("utf-8")  # Store as string in database


def check_pin(pin: str, pin_hash: str | None) -> bool:
    """Timing-safe comparison; malformed hashes count as no match."""
    if not pin or not pin_hash:
        return False
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    role: str,
    pin: str | None = None,
    display_name: str | None = None,
) -> User:
    """
    Create a staff user.

    Raises:
        ValidationError: unknown role or malformed PIN
        ConflictError: username already taken
    """
    role = (role or "").lower()
    if role not in ROLE_LEVELS:
        raise ValidationError(f"Unknown role {role!r}", {"allowed": sorted(ROLE_LEVELS)})
    if not username or not username.strip():
        raise ValidationError("username is required")

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise ConflictError("Username already exists", {"username": username})

    user = User(
        username=username.strip(),
        display_name=display_name,
        role=role,
        pin_hash=hash_pin(pin) if pin else None,
    )
    db.session.add(user)
    db.session.commit()
    return user


def set_pin(user_id: int, pin: str) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", {"user_id": user_id})
    user.pin_hash = hash_pin(pin)
    db.session.commit()
    return user


def verify_pin(pin: str | None, required_role: str) -> User:
    """
    Find the active user at ``required_role`` or above whose PIN matches.

    Raises:
        PinRequiredError: pin missing or blank
        ForbiddenError: no matching user at the required level
    """
    if pin is None or not str(pin).strip():
        raise PinRequiredError("Manager PIN required", {"required_role": required_role})
    pin = str(pin).strip()

    candidates = (
        db.session.query(User)
        .filter(User.is_active.is_(True), User.pin_hash.isnot(None))
        .order_by(User.id)
        .all()
    )
    for user in candidates:
        if has_role(user.role, required_role) and check_pin(pin, user.pin_hash):
            return user

    current_app.logger.warning("PIN rejected for %s approval", required_role)
    raise ForbiddenError("Invalid PIN", {"required_role": required_role})


def context_for_user(user_id: int | None, request_id: str | None = None) -> AuthContext | None:
    """Build an AuthContext from a user id; None when the user is unknown or inactive."""
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return AuthContext(user_id=user.id, role=user.role, username=user.username, request_id=request_id)


def create_default_users(default_pins: dict[str, str] | None = None) -> list[User]:
    """
    Idempotently create one user per role (cashier, manager, admin).

    Used by `flask system init` for a fresh install.
    """
    default_pins = default_pins or {"cashier": "1111", "manager": "2222", "admin": "3333"}
    created = []
    for role in ("cashier", "manager", "admin"):
        if db.session.query(User).filter_by(username=role).first():
            continue
        created.append(create_user(role, role, pin=default_pins.get(role), display_name=role.title()))
    return created
