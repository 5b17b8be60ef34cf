"""
Idempotent database initialization.

Creates the tables and the seeded admin account.
Safe to run any number of times.
"""
import asyncio
import logging

from sqlalchemy import select, text

from .config import settings
from .database import AsyncSessionLocal, Base, engine
from .dependencies.security import hash_password
# Registers every model in Base.metadata
from . import models  # noqa: F401
from .models import User, UserRole

logger = logging.getLogger(__name__)


async def create_tables():
    """Create all tables through SQLAlchemy (idempotent)"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("✓ Tables created")


async def seed_admin():
    """Create the admin account from ADMIN_EMAIL / ADMIN_PASSWORD when it is missing"""
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        print("ℹ️  ADMIN_EMAIL not set, skipping admin seed")
        return

    email = settings.ADMIN_EMAIL.strip().lower()
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none() is not None:
            return
        db.add(User(
            email=email,
            password_hash=hash_password(settings.ADMIN_PASSWORD),
            role=UserRole.ADMIN.value,
            first_name="Admin",
        ))
        await db.commit()
    logger.info(f"Admin account {email} created")
    print(f"✓ Admin account created: {email}")


async def init_db():
    """
    Full database initialization.

    Runs:
    1. Table creation
    2. Admin seed

    Idempotent.
    """
    try:
        print("Initializing database...")
        await create_tables()
        await seed_admin()
        print("✓ Database initialized")
    except Exception as e:
        print(f"✗ Database initialization failed: {e}")
        raise


async def check_db_connection():
    """Check that the database answers"""
    try:
        async with engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.scalar()
        print("✓ Database connection OK")
        return True
    except Exception as e:
        print(f"✗ Database connection failed: {e}")
        return False


if __name__ == "__main__":
    asyncio.run(init_db())
