"""
Identity Models — roles, general role permissions, users, user_roles.

The engine receives an already-authenticated user id; these tables only
answer "which roles does this user hold" and "does this role carry a
general permission such as cases:create".
"""

from datetime import datetime, timezone

from welfare_workflow.models import db


# ═══════════════════════════════════════════════════════════════
# 1. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    display_name = db.Column(db.String(200))
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    role_permissions = db.relationship(
        "RolePermission", back_populates="role", lazy="dynamic", cascade="all, delete-orphan"
    )
    user_roles = db.relationship("UserRole", back_populates="role", lazy="dynamic")

    def to_dict(self, include_permissions=False):
        d = {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "is_active": self.is_active,
        }
        if include_permissions:
            d["permissions"] = [rp.codename for rp in self.role_permissions.all()]
        return d

    def __repr__(self):
        return f"<Role {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. ROLE_PERMISSIONS (general, not stage-scoped)
# ═══════════════════════════════════════════════════════════════
class RolePermission(db.Model):
    __tablename__ = "role_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    resource = db.Column(db.String(50), nullable=False, comment="e.g. cases, welfare_checklist")
    action = db.Column(db.String(30), nullable=False, comment="create | read | update | delete | ...")

    __table_args__ = (
        db.UniqueConstraint("role_id", "resource", "action", name="uq_role_permission"),
    )

    # Relationships
    role = db.relationship("Role", back_populates="role_permissions")

    @property
    def codename(self):
        return f"{self.resource}:{self.action}"


# ═══════════════════════════════════════════════════════════════
# 3. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(100), comment="Primary role name; fallback when no user_roles rows")
    executive_level = db.Column(
        db.Integer, nullable=True,
        comment="Ladder rung this user signs off at (executive role only)",
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    user_roles = db.relationship(
        "UserRole", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan", foreign_keys="UserRole.user_id",
    )

    @property
    def role_names(self):
        """Active role names; falls back to the primary ``role`` column."""
        names = [
            ur.role.name for ur in self.user_roles.filter_by(is_active=True).all()
            if ur.role is not None and ur.role.is_active
        ]
        if not names and self.role:
            names = [self.role]
        return names

    def to_dict(self, include_roles=False):
        d = {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "executive_level": self.executive_level,
            "is_active": self.is_active,
        }
        if include_roles:
            d["roles"] = self.role_names
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 4. USER_ROLES (Junction table)
# ═══════════════════════════════════════════════════════════════
class UserRole(db.Model):
    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )
    is_active = db.Column(db.Boolean, default=True)
    assigned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    # Relationships
    user = db.relationship("User", back_populates="user_roles", foreign_keys=[user_id])
    role = db.relationship("Role", back_populates="user_roles")
