# custody/db/database.py
import logging

import motor.motor_asyncio
from beanie import init_beanie

from custody.core.config import DATABASE_NAME, MONGODB_URL, STORAGE_BACKEND
from custody.db.store import InMemoryReservationStore, ReservationStore

logger = logging.getLogger(__name__)


async def init_db() -> motor.motor_asyncio.AsyncIOMotorClient:
    """Connect to MongoDB and register the Beanie document models."""
    from custody.db.documents import AssetDocument, ConditionRecordDocument, ReservationDocument

    logger.info("Connecting to MongoDB...")
    client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, tz_aware=True)
    database = client[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")

    await init_beanie(
        database=database,
        document_models=[AssetDocument, ReservationDocument, ConditionRecordDocument],
    )
    logger.info("Beanie initialization complete for all models.")
    return client


async def build_store() -> ReservationStore:
    """Store for the configured STORAGE_BACKEND."""
    if STORAGE_BACKEND == "mongo":
        from custody.db.mongo_store import MongoReservationStore

        client = await init_db()
        return MongoReservationStore(client)
    logger.info("Using in-memory reservation store.")
    return InMemoryReservationStore()
