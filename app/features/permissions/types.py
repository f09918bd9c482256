"""
Permission value types, decision sources and predefined role templates.
"""
import enum
from pydantic import BaseModel, ConfigDict, Field


class PermissionKey(BaseModel):
    """
    A (resource, action) capability.
    
    Compared and hashed structurally. The dotted string form ("todolist.view")
    is only used at storage and template boundaries.
    """
    resource: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=50)
    
    model_config = ConfigDict(frozen=True)
    
    def __str__(self) -> str:
        return f"{self.resource}.{self.action}"
    
    @classmethod
    def parse(cls, key: str) -> "PermissionKey":
        """Parse "resource.action"; raises ValueError on anything else."""
        resource, sep, action = key.partition(".")
        if not sep or not resource or not action or "." in action:
            raise ValueError(f"Invalid permission key: {key!r}")
        return cls(resource=resource, action=action)


class PermissionAction(str, enum.Enum):
    """Common module actions."""
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"
    COMPLETE = "complete"
    EXECUTE = "execute"


class PermissionSource(str, enum.Enum):
    """Resolver tier that produced a decision."""
    GLOBAL_ADMIN = "global_admin"
    ORG_OWNER = "org_owner"
    ORG_ADMIN = "org_admin"
    CUSTOM_ROLE = "custom_role"
    DEFAULT = "default"


class PredefinedRole(str, enum.Enum):
    ADMIN = "Admin"
    EDITOR = "Editor"
    VIEWER = "Viewer"


class RoleTemplate(BaseModel):
    """
    Predefined role blueprint.
    
    A template grants its actions on every resource of a module; the
    expanded key list is matched against the module catalog.
    """
    name: str
    description: str
    actions: frozenset[PermissionAction]
    
    model_config = ConfigDict(frozen=True)
    
    def permission_keys(self, resources: set[str]) -> set[str]:
        return {
            str(PermissionKey(resource=resource, action=action.value))
            for resource in resources
            for action in self.actions
        }


ROLE_TEMPLATES: dict[PredefinedRole, RoleTemplate] = {
    PredefinedRole.ADMIN: RoleTemplate(
        name=PredefinedRole.ADMIN.value,
        description="Full access to all module features",
        actions=frozenset({
            PermissionAction.VIEW,
            PermissionAction.CREATE,
            PermissionAction.UPDATE,
            PermissionAction.DELETE,
            PermissionAction.MANAGE,
            PermissionAction.COMPLETE,
        }),
    ),
    PredefinedRole.EDITOR: RoleTemplate(
        name=PredefinedRole.EDITOR.value,
        description="Can create and edit, but not delete or manage settings",
        actions=frozenset({
            PermissionAction.VIEW,
            PermissionAction.CREATE,
            PermissionAction.UPDATE,
            PermissionAction.COMPLETE,
        }),
    ),
    PredefinedRole.VIEWER: RoleTemplate(
        name=PredefinedRole.VIEWER.value,
        description="Read-only access",
        actions=frozenset({PermissionAction.VIEW}),
    ),
}

PREDEFINED_ROLE_NAMES: frozenset[str] = frozenset(role.value for role in PredefinedRole)
