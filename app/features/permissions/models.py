"""
Custom role, grant and assignment models for per-module RBAC.

Graph:
- OrganizationModule 1-* CustomRole (scope root, cascade)
- CustomRole 1-* RolePermission -> ModulePermission (grant edges, cascade)
- Member *-* CustomRole through MemberModuleRole (assignment edges; an
  assigned role cannot be deleted)
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Boolean, Text, JSON, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class CustomRole(Base, TimestampMixin):
    """
    Named, module-scoped bundle of permission grants.
    
    Predefined roles (Admin, Editor, Viewer) are generated when a module is
    assigned to an organization; they cannot be deleted or renamed.
    """
    __tablename__ = "custom_roles"
    __table_args__ = (
        UniqueConstraint("organization_module_id", "name", name="uq_custom_roles_module_name"),
    )
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    organization_module_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organization_modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_predefined: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    created_by: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    
    # Relationships
    organization_module: Mapped["OrganizationModule"] = relationship(  # type: ignore
        "OrganizationModule",
        back_populates="custom_roles",
        lazy="selectin"
    )
    permissions: Mapped[list["RolePermission"]] = relationship(
        "RolePermission",
        back_populates="custom_role",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin"
    )
    
    def __repr__(self) -> str:
        return f"<CustomRole(id={self.id}, name={self.name!r}, org_module_id={self.organization_module_id})>"


class RolePermission(Base):
    """
    Grant edge between a role and a module permission.
    
    Only rows with granted=True count toward effective permissions.
    """
    __tablename__ = "role_permissions"
    
    custom_role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("custom_roles.id", ondelete="CASCADE"),
        primary_key=True
    )
    module_permission_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("module_permissions.id", ondelete="RESTRICT"),
        primary_key=True
    )
    granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Relationships
    custom_role: Mapped["CustomRole"] = relationship("CustomRole", back_populates="permissions")
    module_permission: Mapped["ModulePermission"] = relationship(  # type: ignore
        "ModulePermission",
        lazy="selectin"
    )
    
    def __repr__(self) -> str:
        return f"<RolePermission(role_id={self.custom_role_id}, permission_id={self.module_permission_id}, granted={self.granted})>"


class MemberModuleRole(Base):
    """
    Assignment edge between an organization member and a custom role.
    
    The composite primary key is the only guard against duplicate assignment.
    """
    __tablename__ = "member_module_roles"
    
    member_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("members.id", ondelete="CASCADE"),
        primary_key=True
    )
    custom_role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("custom_roles.id", ondelete="RESTRICT"),
        primary_key=True,
        index=True
    )
    assigned_by: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.now)
    
    # Relationships
    custom_role: Mapped["CustomRole"] = relationship("CustomRole", lazy="selectin")
    
    def __repr__(self) -> str:
        return f"<MemberModuleRole(member_id={self.member_id}, role_id={self.custom_role_id})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit log for module, role and assignment changes.
    
    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    
    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    
    # Context
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    
    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
