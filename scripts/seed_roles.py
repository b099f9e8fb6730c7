"""
Seed script for the system roles and the first operator account.

Run this script after deployment to create:
- The default Admin / Manager / User system roles (reset if they exist)
- A SAAS_OWNER account when OWNER_EMAIL is set and no such user exists

Usage:
    OWNER_EMAIL=owner@acme.io python -m scripts.seed_roles
"""
import asyncio
import os

from sqlalchemy import select

from tenant_access.core.database.engine import get_db, init_db
from tenant_access.features.roles.defaults import DEFAULT_ROLES, ensure_default_roles
from tenant_access.features.users.models import User, UserType
from tenant_access.features.users.store import create_user
from tenant_access.utils import get_logger


log = get_logger(__name__)


async def seed_owner(db, email: str) -> User:
    """Create the SAAS_OWNER account unless the email is already taken."""
    result = await db.execute(select(User).where(User.email == email.lower()))
    existing = result.scalars().first()
    if existing:
        log.debug(f"User '{email}' already exists, skipping")
        return existing

    user = await create_user(db, email=email, name="Owner", user_type=UserType.SAAS_OWNER)
    log.info(f"Created SAAS_OWNER {user.id} ({email})")
    return user


async def main():
    """Main function to seed roles and the owner account."""
    log.info("Starting role seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            roles = await ensure_default_roles(db)

            owner_email = os.environ.get("OWNER_EMAIL")
            if owner_email:
                await seed_owner(db, owner_email)

            log.info("Role seeding completed successfully!")
            log.info("")
            log.info("System roles:")
            for role, definition in zip(roles, DEFAULT_ROLES):
                log.info(f"  - {role.name} ({role.id}): {definition['description']}")

        except Exception as e:
            log.error(f"Error seeding roles: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
