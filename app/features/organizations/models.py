"""
Organization and membership models.

Organizations are the tenants. A Member links a user to one organization with a
coarse authority tier (owner, admin or member) that is independent of the
per-module custom roles.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Boolean, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class MemberRole(str, enum.Enum):
    """Organization-level authority tier of a member."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Organization(Base, TimestampMixin):
    """
    Organization model (tenant).
    """
    __tablename__ = "organizations"
    
    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Relationships
    members: Mapped[list["Member"]] = relationship(
        "Member",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    
    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r})>"


class Member(Base):
    """
    Membership of a user in an organization.
    """
    __tablename__ = "members"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_members_user_organization"),
    )
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=MemberRole.MEMBER.value)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.now)
    
    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="memberships", lazy="selectin")  # type: ignore
    organization: Mapped["Organization"] = relationship("Organization", back_populates="members", lazy="select")
    
    @property
    def is_org_admin(self) -> bool:
        """Owners and admins may administer modules and roles."""
        return self.role in (MemberRole.OWNER.value, MemberRole.ADMIN.value)
    
    def __repr__(self) -> str:
        return f"<Member(id={self.id}, user_id={self.user_id}, org_id={self.organization_id}, role={self.role})>"
