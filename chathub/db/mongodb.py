from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from chathub.db.documents import ChatRoomDocument, MessageDocument, SequenceDocument
from chathub.config import settings
from chathub.core.logging_config import get_logger

logger = get_logger(__name__)

_client: Optional[AsyncIOMotorClient] = None


async def init_db() -> AsyncIOMotorClient:
    """
    Initialize the MongoDB connection and Beanie ODM.

    Connection pool configuration:
    - maxPoolSize=50: Maximum number of connections (prevents exhaustion)
    - minPoolSize=10: Pre-allocated connections (reduces latency)
    - serverSelectionTimeoutMS=5000: Fail fast if MongoDB is down
    - tz_aware=True: Datetimes come back as UTC-aware values
    """
    global _client

    try:
        client = AsyncIOMotorClient(
            settings.MONGODB_URL,
            maxPoolSize=50,
            minPoolSize=10,
            maxIdleTimeMS=45000,
            serverSelectionTimeoutMS=5000,
            retryWrites=True,
            retryReads=True,
            tz_aware=True,
        )

        await client.admin.command('ping')
        logger.info("mongodb_connected", database=settings.DATABASE_NAME)

        await init_beanie(
            database=client[settings.DATABASE_NAME],
            document_models=[ChatRoomDocument, MessageDocument, SequenceDocument]
        )
        logger.info("beanie_initialized", document_models=3)

    except Exception as e:
        logger.error("mongodb_connection_failed", error=str(e))
        raise

    _client = client
    return client


async def close_db() -> None:
    """Close database connection."""
    global _client
    if _client:
        _client.close()
        _client = None
        logger.info("mongodb_connection_closed")


async def ping_db() -> None:
    """Round-trip to the server. Raises if MongoDB is not initialized or unreachable."""
    if _client is None:
        raise RuntimeError("MongoDB is not initialized")
    await _client.admin.command('ping')
