"""MongoDB database connection management using Motor async driver.

Includes connection lifecycle and index management for all collections.
Uniqueness that the engine relies on for correctness (one box per cell,
one payout per checkpoint, bounded free claims) is carried by document
primary keys; the indexes below serve the read paths.
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from squares.config import settings

logger = logging.getLogger("squares.dal.database")

# Global database client and database instances
_client: AsyncIOMotorClient | None = None
_database: AsyncIOMotorDatabase | None = None


async def connect_to_mongo() -> None:
    """Establish connection to MongoDB.

    Called during FastAPI application startup.
    """
    global _client, _database

    _client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
        tz_aware=True,
    )
    _database = _client[settings.DATABASE_NAME]

    # Verify connection by pinging the database
    await _client.admin.command("ping")
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)


async def close_mongo_connection() -> None:
    """Close MongoDB connection.

    Called during FastAPI application shutdown.
    """
    global _client, _database

    if _client:
        _client.close()
        _client = None
        _database = None
        logger.info("Closed MongoDB connection")


def get_database() -> AsyncIOMotorDatabase:
    """Get the MongoDB database instance.

    Raises:
        RuntimeError: If database is not initialized.
    """
    if _database is None:
        raise RuntimeError(
            "Database not initialized. Call connect_to_mongo() first."
        )
    return _database


def get_db() -> AsyncIOMotorDatabase:
    """FastAPI dependency resolving the current database."""
    return get_database()


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the secondary indexes used by the read paths.

    Idempotent -- MongoDB silently ignores indexes that already exist.
    """
    logger.info("Ensuring indexes for all collections...")

    # --- games ---
    await db.games.create_index(
        [("is_active", ASCENDING), ("numbers_assigned", ASCENDING)],
        name="idx_active_unassigned",
    )
    await db.games.create_index(
        [("starts_at", DESCENDING)],
        name="idx_starts_at",
    )

    # --- boxes ---
    await db.boxes.create_index(
        [("game_id", ASCENDING), ("row", ASCENDING), ("col", ASCENDING)],
        unique=True,
        name="uq_game_cell",
    )
    await db.boxes.create_index(
        [("game_id", ASCENDING), ("owner_id", ASCENDING)],
        name="idx_game_owner",
    )

    # --- ledger_entries ---
    await db.ledger_entries.create_index(
        [("user_id", ASCENDING), ("status", ASCENDING)],
        name="idx_user_status",
    )
    await db.ledger_entries.create_index(
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
        name="idx_user_created",
    )
    await db.ledger_entries.create_index(
        [("status", ASCENDING), ("created_at", ASCENDING)],
        name="idx_status_created",
    )
    await db.ledger_entries.create_index(
        [("game_id", ASCENDING), ("kind", ASCENDING)],
        name="idx_game_kind",
    )

    # --- withdrawals ---
    await db.withdrawals.create_index(
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
        name="idx_user_created",
    )
    await db.withdrawals.create_index(
        [("status", ASCENDING), ("created_at", ASCENDING)],
        name="idx_status_created",
    )

    # --- free_claims ---
    await db.free_claims.create_index(
        [("game_id", ASCENDING), ("user_id", ASCENDING)],
        name="idx_game_user",
    )

    logger.info("All indexes ensured successfully.")
