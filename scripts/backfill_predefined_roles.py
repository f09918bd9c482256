"""
Create the predefined Admin/Editor/Viewer roles for module bindings missing them.

Bindings created while provisioning was disabled, or whose background
provisioning failed, are filled in. Safe to run repeatedly.

Usage:
    uv run python -m scripts.backfill_predefined_roles
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal
from app.features.modules.service import backfill_predefined_roles
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    async with AsyncSessionLocal() as db:
        summary = await backfill_predefined_roles(db)
    
    log.info(
        "Checked %d binding(s): %d role(s) created, %d skipped, %d error(s)",
        summary["bindings"], summary["created"], summary["skipped"], summary["errors"]
    )
    if summary["errors"]:
        raise SystemExit(1)


if __name__ == "__main__":
    asyncio.run(main())
