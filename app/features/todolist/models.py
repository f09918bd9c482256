"""
TodoList and TodoItem SQLAlchemy models for the todo-list feature module.
"""
from datetime import datetime
from sqlalchemy import String, Text, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class TodoList(Base, TimestampMixin):
    """
    Organization-scoped todo list.
    
    Attributes:
        id: ULID primary key
        organization_id: Organization owning the list
        title: List title
        description: Optional details
        status: Free-form status ("active" by default)
        created_by: User who created the list
        items: Related TodoItem records
    """
    __tablename__ = "todo_lists"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    # Relationships
    items: Mapped[list["TodoItem"]] = relationship(
        "TodoItem",
        back_populates="todo_list",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TodoItem.created_at"
    )

    def __repr__(self) -> str:
        return f"<TodoList(id={self.id}, title='{self.title}')>"


class TodoItem(Base, TimestampMixin):
    """Single entry of a todo list."""
    __tablename__ = "todo_items"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    todo_list_id: Mapped[str] = mapped_column(
        ForeignKey("todo_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))

    # Relationships
    todo_list: Mapped["TodoList"] = relationship("TodoList", back_populates="items")

    __table_args__ = (
        Index("ix_todo_items_list_completed", "todo_list_id", "completed"),
    )

    def __repr__(self) -> str:
        return f"<TodoItem(id={self.id}, title='{self.title}', completed={self.completed})>"
