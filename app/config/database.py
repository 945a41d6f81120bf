"""
MongoDB database connection using Motor (async driver).

Provides database instance and connection management with lifespan events.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.config.settings import get_settings

logger = logging.getLogger(__name__)

# Global database client and database instances
_client: AsyncIOMotorClient | None = None
_database: AsyncIOMotorDatabase | None = None


# Collection indexes (collection -> list of index specs)
INDEXES = {
    "positions": [
        [("owner_id", 1), ("status", 1), ("open_time", -1)],
        [("status", 1), ("instrument", 1)],
    ],
    "position_modifications": [
        [("position_id", 1), ("timestamp", -1)],
        [("timestamp", -1)],
    ],
    "mentor_assignments": [
        [("mentor_id", 1), ("user_id", 1)],
    ],
}


async def connect_to_mongodb() -> None:
    """
    Connect to MongoDB database.

    This function is called during application startup.
    Creates a connection pool and tests the connection.

    Raises:
        Exception: If connection to MongoDB fails
    """
    global _client, _database

    try:
        current_settings = get_settings()

        logger.info("Connecting to MongoDB at %s", current_settings.MONGODB_URL)

        _client = AsyncIOMotorClient(
            current_settings.MONGODB_URL,
            serverSelectionTimeoutMS=5000,  # 5 seconds timeout
            maxPoolSize=10,
            minPoolSize=1,
            tz_aware=True,
        )

        _database = _client[current_settings.MONGODB_DB_NAME]

        # Test the connection
        await _client.admin.command("ping")

        await ensure_indexes(_database)

        logger.info(
            "Successfully connected to MongoDB database: %s",
            current_settings.MONGODB_DB_NAME,
        )

    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {str(e)}")
        raise


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the indexes the position store queries rely on."""
    for collection_name, specs in INDEXES.items():
        for spec in specs:
            await db[collection_name].create_index(spec)
    logger.debug("MongoDB indexes ensured")


async def close_mongodb_connection() -> None:
    """
    Close MongoDB database connection.

    This function is called during application shutdown.
    """
    global _client, _database

    if _client:
        logger.info("Closing MongoDB connection")
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


def get_database() -> AsyncIOMotorDatabase:
    """
    Get MongoDB database instance.

    Returns:
        AsyncIOMotorDatabase: MongoDB database instance

    Raises:
        RuntimeError: If database is not connected
    """
    if _database is None:
        raise RuntimeError(
            "Database is not connected. Call connect_to_mongodb() first."
        )
    return _database

