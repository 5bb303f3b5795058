from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Roles recognised by route guards. Authentication itself is upstream.
DEFAULT_ROLES = {
    "Super Admin": "Full access, including QuickBooks connection management",
    "Admin": "Order approval, production overrides and sync",
    "Office Employee": "Order entry and print queue",
    "Warehouse Staff": "Station scans (start/complete work)",
}


class User(db.Model):
    """
    Local identity for attribution and role checks.

    WHY: Every scan, approval and print must be attributable. The upstream auth
    provider authenticates; we only resolve its forwarded user id to this row.
    """
    __tablename__ = "users"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=True)
    display_name = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    roles = db.relationship("Role", secondary="user_roles", lazy="selectin", viewonly=True)

    @property
    def role_names(self) -> set[str]:
        return {role.name for role in self.roles}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "displayName": self.display_name,
            "isActive": self.is_active,
            "roles": sorted(self.role_names),
            "createdAt": to_utc_z(self.created_at),
        }


class Role(db.Model):
    __tablename__ = "roles"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}


class UserRole(db.Model):
    __tablename__ = "user_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
