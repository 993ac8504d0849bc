import logging
from contextlib import contextmanager
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from marketplace.core.config import settings
from marketplace.core.exceptions import ConflictError, NotFound, StoreUnavailable
from marketplace.db.store import (
    DEALS,
    INVOICES,
    MESSAGES,
    USERS,
    Record,
    RecordStore,
    SortSpec,
)
from marketplace.models.base import new_id

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(table: str):
    """Translate driver failures into marketplace errors."""
    try:
        yield
    except DuplicateKeyError as e:
        raise ConflictError(f"Duplicate key in {table}") from e
    except PyMongoError as e:
        logger.error("MongoDB failure on %s: %s", table, e)
        raise StoreUnavailable(f"Record store unavailable: {e}") from e


class MongoRecordStore(RecordStore):
    """Record store backed by a motor database."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def find(
        self,
        table: str,
        predicate: Optional[Record] = None,
        sort: Optional[SortSpec] = None
    ) -> List[Record]:
        with _store_errors(table):
            cursor = self.db[table].find(predicate or {})
            if sort:
                cursor = cursor.sort(sort)
            return await cursor.to_list(None)

    async def get(self, table: str, record_id: str) -> Record:
        with _store_errors(table):
            doc = await self.db[table].find_one({"_id": record_id})
        if doc is None:
            raise NotFound(f"{table} record {record_id} not found")
        return doc

    async def insert(self, table: str, record: Record) -> Record:
        doc = dict(record)
        doc.setdefault("_id", new_id())
        with _store_errors(table):
            await self.db[table].insert_one(doc)
        return doc

    async def update(
        self,
        table: str,
        record_id: str,
        fields: Record,
        expected: Optional[Record] = None
    ) -> None:
        query = {"_id": record_id, **(expected or {})}
        with _store_errors(table):
            result = await self.db[table].update_one(query, {"$set": fields})
            if result.matched_count:
                return
            exists = await self.db[table].count_documents({"_id": record_id}, limit=1)
        if not exists:
            raise NotFound(f"{table} record {record_id} not found")
        raise ConflictError(f"{table} record {record_id} changed concurrently")


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None
    store: RecordStore = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(
        settings.MONGODB_URL,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS
    )
    mongodb.db = mongodb.client[settings.DATABASE_NAME]
    mongodb.store = MongoRecordStore(mongodb.db)

    # Create indexes
    await create_indexes()
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes():
    """Create database indexes."""
    # Market view and seller dashboard
    await mongodb.db[INVOICES].create_index([("status", 1), ("created_at", -1)])
    await mongodb.db[INVOICES].create_index("seller_id")

    # Deal lookups per invoice and per party
    await mongodb.db[DEALS].create_index([("invoice_id", 1), ("status", 1)])
    await mongodb.db[DEALS].create_index([("invoice_id", 1), ("buyer_id", 1)])
    await mongodb.db[DEALS].create_index("seller_id")

    # Chat threads
    await mongodb.db[MESSAGES].create_index([("deal_id", 1), ("timestamp", 1)])

    await mongodb.db[USERS].create_index("role")
