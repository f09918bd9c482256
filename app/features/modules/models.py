"""
Module catalog and organization-module binding models.

A Module is a pluggable feature package (e.g. "todolist") that owns a closed
catalog of (resource, action) permissions. An OrganizationModule binds a module
to one organization and is the scope root of every custom role for that pair.
"""
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Boolean, Text, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Module(Base, TimestampMixin):
    """
    Feature module. Never deleted in normal operation; soft-disabled via is_active.
    """
    __tablename__ = "modules"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # Slug is immutable once created
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Relationships
    permissions: Mapped[list["ModulePermission"]] = relationship(
        "ModulePermission",
        back_populates="module",
        lazy="selectin",
        order_by="ModulePermission.resource"
    )
    
    def __repr__(self) -> str:
        return f"<Module(id={self.id}, slug={self.slug!r})>"


class ModulePermission(Base, TimestampMixin):
    """
    One grantable (resource, action) capability of a module.
    
    Append-only: rows referenced by role grants are never deleted.
    """
    __tablename__ = "module_permissions"
    __table_args__ = (
        UniqueConstraint("module_id", "resource", "action", name="uq_module_permissions_key"),
    )
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    module_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("modules.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    resource: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    
    module: Mapped["Module"] = relationship("Module", back_populates="permissions", lazy="selectin")
    
    @property
    def key(self) -> str:
        return f"{self.resource}.{self.action}"
    
    def __repr__(self) -> str:
        return f"<ModulePermission(id={self.id}, module_id={self.module_id}, key={self.key})>"


class OrganizationModule(Base, TimestampMixin):
    """
    Binding of a module to an organization.
    
    Deleting the binding removes every custom role, grant and assignment
    scoped to it.
    """
    __tablename__ = "organization_modules"
    __table_args__ = (
        UniqueConstraint("organization_id", "module_id", name="uq_organization_modules_pair"),
    )
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    module_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("modules.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Free-form per-organization module settings
    settings: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    
    assigned_by: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    
    # Relationships
    module: Mapped["Module"] = relationship("Module", lazy="selectin")
    custom_roles: Mapped[list["CustomRole"]] = relationship(  # type: ignore
        "CustomRole",
        back_populates="organization_module",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select"
    )
    
    def __repr__(self) -> str:
        return f"<OrganizationModule(id={self.id}, org_id={self.organization_id}, module_id={self.module_id})>"
