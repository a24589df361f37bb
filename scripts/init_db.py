import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import create_tables, engine
from core.logging import setup_logging

logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    try:
        await create_tables()
    finally:
        await engine.dispose()
    logger.info("Tables created successfully.")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
