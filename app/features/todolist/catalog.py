"""
Catalog entry of the todolist module: its slug and the permissions it defines.
"""
from app.features.modules.schemas import ModulePermissionCreate


MODULE_SLUG = "todolist"
MODULE_NAME = "Todo List"

PERMISSIONS = [
    # Todo lists
    ("todolist", "view", "View todo lists"),
    ("todolist", "create", "Create todo lists"),
    ("todolist", "update", "Update todo lists"),
    ("todolist", "delete", "Delete todo lists"),
    ("todolist", "manage", "Manage todo list settings"),
    
    # Todo items
    ("todoitem", "view", "View todo items"),
    ("todoitem", "create", "Create todo items"),
    ("todoitem", "update", "Update todo items"),
    ("todoitem", "delete", "Delete todo items"),
    ("todoitem", "complete", "Mark todo items as completed"),
]


def permission_catalog() -> list[ModulePermissionCreate]:
    return [
        ModulePermissionCreate(resource=resource, action=action, description=description)
        for resource, action, description in PERMISSIONS
    ]
