"""
Seed script to register the todolist module in the module catalog.

Creates the module with its ten permissions. Running it again only adds
permissions missing from an existing module.

Usage:
    uv run python -m scripts.seed_todolist_module
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.modules.service import create_module, add_module_permissions, get_module_by_slug
from app.features.todolist.catalog import MODULE_SLUG, MODULE_NAME, permission_catalog
from app.utils import get_logger


log = get_logger(__name__)


async def seed_todolist_module():
    async with AsyncSessionLocal() as db:
        module = await get_module_by_slug(db, MODULE_SLUG)
        if module is None:
            result = await create_module(
                db,
                name=MODULE_NAME,
                slug=MODULE_SLUG,
                description="Shared todo lists for organization members",
                icon="check-square",
                default_permissions=permission_catalog(),
            )
        else:
            log.info("Module %r already exists, adding missing permissions", MODULE_SLUG)
            result = await add_module_permissions(db, module.id, permission_catalog())
        
        if not result.success:
            raise RuntimeError(f"Seeding todolist module failed: {result.error}")


async def main():
    log.info("Initializing database tables...")
    await init_db()
    await seed_todolist_module()
    log.info("Todolist module seeded")


if __name__ == "__main__":
    asyncio.run(main())
