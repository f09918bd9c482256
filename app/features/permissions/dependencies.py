"""
Authorization dependencies and audit logging.

Implements:
- The admin gate guarding module and role administration
- Route protection backed by the permission resolver
- Audit logging helpers
"""
from typing import Annotated, Dict, Any, Optional
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, AsyncSessionLocal
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.organizations.dependencies import get_member, get_current_member
from app.features.organizations.models import Member
from app.features.permissions.checker import check_permission
from app.features.permissions.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Admin gate
# ============================================================================

async def require_org_admin(
    organization_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Require an organization owner/admin or a global admin.
    
    Usage:
        @router.post("/organizations/{organization_id}/roles")
        async def create_role(admin: User = Depends(require_org_admin)):
            ...
    """
    if user.is_admin:
        return user
    
    member = await get_member(db, user.id, organization_id)
    if member is None or not member.is_org_admin:
        log.info("User %s denied administration of organization %s", user.id, organization_id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only organization owners or admins can perform this action"
        )
    
    return user


# ============================================================================
# Resolver-backed route protection
# ============================================================================

def require_module_permission(module_slug: str, resource: str, action: str):
    """
    FastAPI dependency requiring a module permission of the current member.
    
    Usage:
        @router.delete("/{todo_list_id}")
        async def delete_todo_list(
            member: Member = Depends(require_module_permission("todolist", "todolist", "delete"))
        ):
            ...
    
    Raises:
        HTTPException: 403 without revealing which tier denied
    """
    async def permission_dependency(
        member: Annotated[Member, Depends(get_current_member)],
        db: Annotated[AsyncSession, Depends(get_db)]
    ) -> Member:
        result = await check_permission(
            db, member.id, member.organization_id, module_slug, resource, action
        )
        if not result.allowed:
            log.info(
                "Member %s denied %s.%s in module %s: %s",
                member.id, resource, action, module_slug, result.reason
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You don't have permission to perform this action"
            )
        return member
    
    return permission_dependency


# ============================================================================
# Audit Logging
# ============================================================================

def request_origin(request: Request) -> Dict[str, Optional[str]]:
    """Client address and user agent for audit entries."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


async def create_audit_log(
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> None:
    """
    Record an audit log entry in its own session.
    
    Scheduled as a background task after the audited change has committed.
    """
    try:
        async with AsyncSessionLocal() as db:
            db.add(AuditLog(
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                organization_id=organization_id,
                details=details,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:255] or None,
            ))
            await db.commit()
    except Exception:
        log.exception("Failed to write audit log for %s %s:%s", action, resource_type, resource_id)
        return
    
    log.info(
        "Audit: user=%s action=%s resource=%s:%s org=%s",
        user_id, action, resource_type, resource_id, organization_id
    )
