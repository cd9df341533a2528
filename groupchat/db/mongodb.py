from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from groupchat.models.group import GroupDocument
from groupchat.models.user import UserDocument
from groupchat.config import settings
from groupchat.core.logging_config import get_logger

logger = get_logger(__name__)


async def init_db(
    mongodb_url: str | None = None,
    database_name: str | None = None,
) -> AsyncIOMotorClient:
    """
    Initialize database connection and Beanie ODM.

    Connection pool configuration:
    - maxPoolSize=50: Maximum number of connections (prevents exhaustion)
    - minPoolSize=10: Pre-allocated connections (reduces latency)
    - maxIdleTimeMS=45000: Close idle connections after 45s
    - serverSelectionTimeoutMS=5000: Fail fast if MongoDB is down
    """
    mongodb_url = mongodb_url or settings.MONGODB_URL
    database_name = database_name or settings.DATABASE_NAME

    try:
        client = AsyncIOMotorClient(
            mongodb_url,
            maxPoolSize=50,
            minPoolSize=10,
            maxIdleTimeMS=45000,
            serverSelectionTimeoutMS=5000,
            retryWrites=True,
            retryReads=True,
            tz_aware=True,
        )

        await client.admin.command('ping')
        logger.info("mongodb_connected", mongodb_url=mongodb_url)

        await init_beanie(
            database=client[database_name],
            document_models=[GroupDocument, UserDocument]
        )

        logger.info("beanie_initialized", database=database_name)
        return client

    except Exception as e:
        logger.error("mongodb_connection_failed", mongodb_url=mongodb_url, error=str(e))
        raise


async def close_db(client: AsyncIOMotorClient):
    """Close database connection."""
    if client:
        client.close()
        logger.info("mongodb_connection_closed")
