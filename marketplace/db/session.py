from marketplace.db.mongo import mongodb
from marketplace.db.store import RecordStore


async def get_store() -> RecordStore:
    """Return the active record store."""
    return mongodb.store
