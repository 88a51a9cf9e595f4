"""
Database initialization script

Run this script to create all database tables.
Usage: python init_db.py [--drop]
"""
import asyncio
import logging

from docintake.core.config import settings
from docintake.core.database import engine, Base
from docintake.core.logging import configure_logging
from docintake import models  # noqa: F401

logger = logging.getLogger("init_db")


async def init_database():
    """Create all database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created: %s", ", ".join(sorted(Base.metadata.tables)))


async def drop_database():
    """Drop all database tables"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.info("Database tables dropped")


if __name__ == "__main__":
    import sys

    configure_logging(settings.LOG_LEVEL)
    if len(sys.argv) > 1 and sys.argv[1] == "--drop":
        asyncio.run(drop_database())
    else:
        asyncio.run(init_database())
