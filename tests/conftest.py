import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="orgmod-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["PROVISION_PREDEFINED_ROLES"] = "1"

import pytest  # noqa: E402
from fastapi import BackgroundTasks, Depends  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from app.core.database.base import Base, generate_ulid  # noqa: E402
from app.core.database.engine import engine, get_db, import_models, AsyncSessionLocal  # noqa: E402
from app.features.users.models import User, GLOBAL_ADMIN_ROLE  # noqa: E402
from app.features.users.dependencies import get_current_user  # noqa: E402
from app.features.organizations.models import Organization, Member  # noqa: E402
from app.features.modules.schemas import ModulePermissionCreate  # noqa: E402
from app.features.modules.service import create_module, assign_module_to_organization  # noqa: E402
from app.features.permissions.roles import list_custom_roles  # noqa: E402
from app.features.todolist.catalog import MODULE_SLUG, MODULE_NAME, permission_catalog  # noqa: E402


@pytest.fixture
async def db():
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    
    async with AsyncSessionLocal() as session:
        yield session


class Factory:
    """Creates rows and hands back their IDs."""
    
    def __init__(self, db: AsyncSession):
        self.db = db
    
    async def user(self, name: str = "Alice", role: str | None = None) -> str:
        uid = generate_ulid()
        user = User(appwrite_id=uid, email=f"{uid.lower()}@example.com", name=name, role=role)
        self.db.add(user)
        await self.db.commit()
        return user.id
    
    async def global_admin(self) -> str:
        return await self.user("Root", role=GLOBAL_ADMIN_ROLE)
    
    async def organization(self, name: str = "Acme") -> str:
        organization = Organization(name=name, slug=f"{name.lower()}-{generate_ulid().lower()}")
        self.db.add(organization)
        await self.db.commit()
        return organization.id
    
    async def member(self, organization_id: str, role: str = "member", user_id: str | None = None) -> str:
        if user_id is None:
            user_id = await self.user()
        member = Member(user_id=user_id, organization_id=organization_id, role=role)
        self.db.add(member)
        await self.db.commit()
        return member.id
    
    async def module(self, slug: str, permissions: list[tuple[str, str]]) -> str:
        result = await create_module(
            self.db,
            name=slug.title(),
            slug=slug,
            default_permissions=[
                ModulePermissionCreate(resource=resource, action=action)
                for resource, action in permissions
            ],
        )
        assert result.success, result.error
        return result.data.id
    
    async def todolist_module(self) -> str:
        result = await create_module(
            self.db, name=MODULE_NAME, slug=MODULE_SLUG, default_permissions=permission_catalog()
        )
        assert result.success, result.error
        return result.data.id
    
    async def binding(self, organization_id: str, module_id: str, provision: bool = True) -> str:
        """Assign a module; runs the provisioning job unless told otherwise."""
        tasks = BackgroundTasks()
        result = await assign_module_to_organization(self.db, organization_id, module_id, tasks)
        assert result.success, result.error
        if provision:
            await tasks()
        return result.data.id
    
    async def roles_by_name(self, organization_module_id: str) -> dict[str, str]:
        return {role.name: role.id for role, _ in await list_custom_roles(self.db, organization_module_id)}


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


@pytest.fixture
async def todolist_module(factory) -> str:
    return await factory.todolist_module()


@pytest.fixture
async def org_id(factory) -> str:
    return await factory.organization()


@pytest.fixture
async def todolist_binding(factory, org_id, todolist_module) -> str:
    return await factory.binding(org_id, todolist_module)


@pytest.fixture
async def client(db):
    """HTTP client whose requests are made as the user in `client.user_id`."""
    from app.main import app
    
    http = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    http.user_id = None
    
    async def current_user_override(session: AsyncSession = Depends(get_db)) -> User:
        return await session.get(User, http.user_id)
    
    app.dependency_overrides[get_current_user] = current_user_override
    try:
        yield http
    finally:
        app.dependency_overrides.clear()
        await http.aclose()
