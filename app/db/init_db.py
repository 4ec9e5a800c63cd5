import asyncio
import logging

from app.core.permissions import AdminRole
from app.core.settings import settings
from app.db.session import AsyncSessionLocal
from app.models.admin_profile import AdminProfile

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """
    Seed the configured super admin so the first manager accounts can be created.
    """
    if not settings.seed_super_admin_id or not settings.seed_super_admin_email:
        logger.info("No seed super admin configured; skipping seeding")
        return
    async with AsyncSessionLocal() as session:
        profile = await session.get(AdminProfile, settings.seed_super_admin_id)
        if profile:
            logger.info("Seed super admin %s already exists", profile.id)
            return
        session.add(
            AdminProfile(
                id=settings.seed_super_admin_id,
                display_name=settings.seed_super_admin_name,
                email=settings.seed_super_admin_email.lower(),
                role=AdminRole.SUPER_ADMIN.value,
                unlimited_approval=True,
                permissions={},
                specializations=[],
                is_active=True,
                created_by="system",
            )
        )
        await session.commit()
        logger.info("Seed super admin %s created", settings.seed_super_admin_id)


if __name__ == "__main__":
    asyncio.run(init_db())
