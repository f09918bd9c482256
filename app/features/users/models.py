"""
User model with ULID primary keys.
"""
from datetime import datetime
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


GLOBAL_ADMIN_ROLE = "admin"


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.
    
    Credentials live with the identity provider (Appwrite); this row only mirrors
    the identity and carries the global role. `role == "admin"` marks a global
    administrator, the highest authority tier.
    """
    __tablename__ = "users"
    
    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # Appwrite user ID (for linking with Appwrite authentication)
    appwrite_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    
    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    
    # Global role: "admin" or null
    role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)
    
    # Relationships
    memberships: Mapped[list["Member"]] = relationship(  # type: ignore
        "Member",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    
    @property
    def is_admin(self) -> bool:
        return self.role == GLOBAL_ADMIN_ROLE
    
    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
