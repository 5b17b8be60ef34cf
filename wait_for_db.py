#!/usr/bin/env python3
"""Small utility that waits for the database to accept connections"""
import asyncio
import sys

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from qanoonmate.config import settings


async def check_db():
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        print(f"Database check failed: {type(e).__name__}: {e}", file=sys.stderr)
        return False
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(0 if asyncio.run(check_db()) else 1)
