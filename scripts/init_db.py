#!/usr/bin/env python3
"""
Create the database tables outside the application lifespan.
Uses the same DatabaseManager (and DB_URL) the API uses.
"""

import asyncio
import logging
import sys

from sqlalchemy import inspect

from dayplan.db.session import db_manager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_database() -> None:
    try:
        logger.info("Connecting to database...")
        await db_manager.initialize()
        await db_manager.init_db()

        async with db_manager.engine.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        logger.info(f"Tables present: {', '.join(sorted(tables))}")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
    finally:
        await db_manager.close()


if __name__ == "__main__":
    asyncio.run(init_database())
