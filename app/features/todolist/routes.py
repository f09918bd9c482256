"""
Todo-list API routes.

Every route is gated by the permission resolver through
`require_module_permission("todolist", resource, action)`.
"""
from datetime import datetime, timezone
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Member
from app.features.permissions.dependencies import require_module_permission
from app.features.todolist.catalog import MODULE_SLUG
from app.features.todolist.models import TodoList, TodoItem
from app.features.todolist.schemas import (
    TodoListCreate,
    TodoListUpdate,
    TodoListResponse,
    TodoItemCreate,
    TodoItemUpdate,
    TodoItemResponse,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def todolist_permission(resource: str, action: str):
    return require_module_permission(MODULE_SLUG, resource, action)


async def _get_todo_list(db: AsyncSession, organization_id: str, todo_list_id: str) -> TodoList:
    """Todo list of the organization, or 404."""
    todo_list = await db.scalar(
        select(TodoList)
        .where(TodoList.id == todo_list_id, TodoList.organization_id == organization_id)
        .execution_options(populate_existing=True)
    )
    if not todo_list:
        raise HTTPException(status_code=404, detail="Todo list not found")
    return todo_list


async def _get_todo_item(db: AsyncSession, organization_id: str, todo_list_id: str, item_id: str) -> TodoItem:
    await _get_todo_list(db, organization_id, todo_list_id)
    item = await db.scalar(
        select(TodoItem).where(TodoItem.id == item_id, TodoItem.todo_list_id == todo_list_id)
    )
    if not item:
        raise HTTPException(status_code=404, detail="Todo item not found")
    return item


# ============================================================================
# Todo Lists
# ============================================================================

@router.get("", response_model=list[TodoListResponse])
async def list_todo_lists(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(todolist_permission("todolist", "view"))],
    status: str | None = None,
    skip: int = 0,
    limit: int = 100
):
    """
    Retrieve a paginated list of the organization's todo lists.
    
    Parameters:
        status (str | None): If provided, only lists with this status are returned.
        skip (int): Number of records to skip (offset) for pagination.
        limit (int): Maximum number of records to return.
    """
    query = select(TodoList).where(TodoList.organization_id == organization_id)
    if status:
        query = query.where(TodoList.status == status)
    query = query.order_by(TodoList.created_at.desc()).offset(skip).limit(limit)
    
    result = await db.execute(query)
    return result.scalars().all()


@router.post("", response_model=TodoListResponse, status_code=201)
async def create_todo_list(
    organization_id: str,
    data: TodoListCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(todolist_permission("todolist", "create"))]
):
    todo_list = TodoList(
        organization_id=organization_id,
        created_by=member.user_id,
        **data.model_dump()
    )
    db.add(todo_list)
    await db.commit()
    
    log.info("Member %s created todo list %s", member.id, todo_list.id)
    return await _get_todo_list(db, organization_id, todo_list.id)


@router.get("/{todo_list_id}", response_model=TodoListResponse)
async def get_todo_list(
    organization_id: str,
    todo_list_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(todolist_permission("todolist", "view"))]
):
    """Retrieve a todo list with its items."""
    return await _get_todo_list(db, organization_id, todo_list_id)


@router.patch("/{todo_list_id}", response_model=TodoListResponse)
async def update_todo_list(
    organization_id: str,
    todo_list_id: str,
    data: TodoListUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(todolist_permission("todolist", "update"))]
):
    todo_list = await _get_todo_list(db, organization_id, todo_list_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(todo_list, field, value)
    await db.commit()
    return await _get_todo_list(db, organization_id, todo_list_id)


@router.delete("/{todo_list_id}", status_code=204)
async def delete_todo_list(
    organization_id: str,
    todo_list_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(todolist_permission("todolist", "delete"))]
):
    """Delete a todo list and all of its items."""
    todo_list = await _get_todo_list(db, organization_id, todo_list_id)
    await db.delete(todo_list)
    await db.commit()
    log.info("Member %s deleted todo list %s", member.id, todo_list_id)
    return None


# ============================================================================
# Todo Items
# ============================================================================

@router.post("/{todo_list_id}/items", response_model=TodoItemResponse, status_code=201)
async def create_todo_item(
    organization_id: str,
    todo_list_id: str,
    data: TodoItemCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    member: Annotated[Member, Depends(todolist_permission("todoitem", "create"))]
):
    await _get_todo_list(db, organization_id, todo_list_id)
    item = TodoItem(todo_list_id=todo_list_id, created_by=member.user_id, **data.model_dump())
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


@router.patch("/{todo_list_id}/items/{item_id}", response_model=TodoItemResponse)
async def update_todo_item(
    organization_id: str,
    todo_list_id: str,
    item_id: str,
    data: TodoItemUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(todolist_permission("todoitem", "update"))]
):
    item = await _get_todo_item(db, organization_id, todo_list_id, item_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(item, field, value)
    await db.commit()
    await db.refresh(item)
    return item


@router.post("/{todo_list_id}/items/{item_id}/complete", response_model=TodoItemResponse)
async def complete_todo_item(
    organization_id: str,
    todo_list_id: str,
    item_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(todolist_permission("todoitem", "complete"))],
    completed: bool = True
):
    """Mark an item completed, or reopen it with `completed=false`."""
    item = await _get_todo_item(db, organization_id, todo_list_id, item_id)
    item.completed = completed
    item.completed_at = datetime.now(timezone.utc) if completed else None
    await db.commit()
    await db.refresh(item)
    return item


@router.delete("/{todo_list_id}/items/{item_id}", status_code=204)
async def delete_todo_item(
    organization_id: str,
    todo_list_id: str,
    item_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(todolist_permission("todoitem", "delete"))]
):
    item = await _get_todo_item(db, organization_id, todo_list_id, item_id)
    await db.delete(item)
    await db.commit()
    return None
