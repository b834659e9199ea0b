import asyncio
import logging
import sys

from vaultshare.app.core.logging import configure_logging
from vaultshare.app.db.base import Base
from vaultshare.app.db.session import engine

# Registers every table on Base.metadata
import vaultshare.app.models  # noqa: F401

logger = logging.getLogger(__name__)


async def init_models(drop: bool = False) -> None:
    try:
        async with engine.begin() as conn:
            if drop:
                logger.warning("Dropping all tables")
                await conn.run_sync(Base.metadata.drop_all)

            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables ready")
    except Exception:
        logger.exception("Could not create database tables")
        raise


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_models(drop="--drop" in sys.argv[1:]))
