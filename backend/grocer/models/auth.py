from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Staff member known to the register.

    WHY: Sessions, movements and audit events are attributed to users, and
    PIN-gated actions are approved by matching a PIN against active users.

    SECURITY:
    - pin_hash is bcrypt; the raw PIN is never stored
    - role is one of cashier, manager, admin (see permissions.ROLE_LEVELS)
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False)
    display_name = db.Column(db.String(128), nullable=True)
    role = db.Column(db.String(16), nullable=False, default="cashier", index=True)
    pin_hash = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "role": self.role,
            "is_active": self.is_active,
            "has_pin": self.pin_hash is not None,
            "created_at": to_utc_z(self.created_at),
        }
