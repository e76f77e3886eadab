from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .base import SoftDeleteMixin


ROLE_ADMIN = "ADMIN"
ROLE_SELLER = "SELLER"

VALID_ROLES = [ROLE_ADMIN, ROLE_SELLER]


class User(SoftDeleteMixin, db.Model):
    """
    User accounts for attribution and privilege checks.

    Identity (sessions, tokens, passwords) lives in the external auth layer;
    this table only answers "who acted" and "is this actor privileged".
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("org_id", "username", name="uq_users_org_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_SELLER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "store_id": self.store_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
