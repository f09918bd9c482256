"""
Pydantic schemas for TodoList and TodoItem API requests/responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict


class TodoItemBase(BaseModel):
    """Base schema for todo item."""
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class TodoItemCreate(TodoItemBase):
    """Schema for creating a todo item."""
    pass


class TodoItemUpdate(BaseModel):
    """Schema for updating a todo item."""
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None


class TodoItemResponse(TodoItemBase):
    """Schema for todo item response."""
    id: str
    todo_list_id: str
    completed: bool
    completed_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TodoListBase(BaseModel):
    """Base schema for todo list."""
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None


class TodoListCreate(TodoListBase):
    """Schema for creating a todo list."""
    pass


class TodoListUpdate(BaseModel):
    """Schema for updating a todo list."""
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    status: str | None = Field(None, max_length=20)


class TodoListResponse(TodoListBase):
    """Schema for todo list response."""
    id: str
    organization_id: str
    status: str
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime
    items: list[TodoItemResponse] = []

    model_config = ConfigDict(from_attributes=True)
