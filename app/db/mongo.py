import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from app.core.config import settings

logger = logging.getLogger(__name__)

class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
        logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create the indexes the ledger queries rely on."""
    # Expense indexes
    await mongodb.db["expenses"].create_index([("group_id", 1), ("is_archived", 1)])
    await mongodb.db["expense_shares"].create_index("expense_id")
    await mongodb.db["expense_shares"].create_index([("group_id", 1), ("user_id", 1)])

    # Settlement indexes
    await mongodb.db["settlements"].create_index([("group_id", 1), ("status", 1)])
    await mongodb.db["settlements"].create_index([("group_id", 1), ("created_at", -1)])
    await mongodb.db["settlements"].create_index("original_split_id", sparse=True)
    await mongodb.db["settlement_history"].create_index([("settlement_id", 1), ("created_at", -1)])

    # Exchange rate cache: one row per pair
    await mongodb.db["exchange_rates"].create_index(
        [("from_currency", 1), ("to_currency", 1)], unique=True
    )

def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    return mongodb.db
