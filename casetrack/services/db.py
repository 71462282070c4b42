# casetrack/services/db.py
# Database access: client construction, the connect/disconnect lifecycle and a
# few helpers shared by the services. Services never reach for a module-level
# client; they receive the database handle from whoever owns the lifecycle.
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from pymongo import ASCENDING, AsyncMongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from casetrack.configs import env, get_setting
from casetrack.exceptions import PersistenceFailure

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = {
    "regions": "regions",
    "districts": "districts",
    "subdistricts": "subdistricts",
    "communities": "communities",
    "facilities": "healthfacilities",
    "case_types": "casetypes",
    "cases": "cases",
}


def collection_names() -> Dict[str, str]:
    """Configured collection names, filled in with the defaults."""
    names = dict(DEFAULT_COLLECTIONS)
    for key in DEFAULT_COLLECTIONS:
        configured = get_setting("collections", key)
        if configured:
            names[key] = configured
    return names


def get_mongo_settings() -> Tuple[str, str]:
    """MONGO_URI / MONGO_DB from the environment win over config.yaml."""
    uri = env.get("MONGO_URI") or get_setting("mongo", "uri", "mongodb://localhost:27017")
    db_name = env.get("MONGO_DB") or get_setting("mongo", "db_name", "casetrack")
    return uri, db_name


def create_client(uri: Optional[str] = None) -> AsyncMongoClient:
    if uri is None:
        uri, _ = get_mongo_settings()
    return AsyncMongoClient(uri)


@asynccontextmanager
async def database_lifespan(
    uri: Optional[str] = None, db_name: Optional[str] = None
) -> AsyncIterator[Tuple[AsyncMongoClient, Any]]:
    """
    Connects to MongoDB, yields (client, database) and closes the client on exit.
    """
    default_uri, default_db = get_mongo_settings()
    client = create_client(uri or default_uri)
    try:
        await client.admin.command("ping")
        logger.info("MongoDB connection successful.")
    except PyMongoError as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        await client.close()
        raise PersistenceFailure(f"Could not connect to MongoDB: {e}") from e

    try:
        yield client, client[db_name or default_db]
    finally:
        await client.close()
        logger.info("MongoDB connection closed.")


INDEXES = {
    "regions": [[("name", ASCENDING)]],
    "districts": [[("region", ASCENDING), ("name", ASCENDING)]],
    "subdistricts": [[("district", ASCENDING), ("name", ASCENDING)]],
    "communities": [
        [("district", ASCENDING), ("name", ASCENDING)],
        [("subDistrict", ASCENDING), ("name", ASCENDING)],
    ],
    "facilities": [
        [("region", ASCENDING), ("district", ASCENDING), ("subDistrict", ASCENDING)]
    ],
    "cases": [[("archived", ASCENDING), ("status", ASCENDING), ("caseType", ASCENDING)]],
}


async def ensure_indexes(db) -> int:
    """
    Creates the lookup indexes. These are a read optimisation only; a failure is
    logged and start-up continues. Returns the number of indexes ensured.
    """
    names = collection_names()
    ensured = 0
    for key, index_list in INDEXES.items():
        for keys in index_list:
            try:
                await db[names[key]].create_index(keys)
                ensured += 1
            except PyMongoError as e:
                logger.warning(f"Could not create index {keys} on {names[key]}: {e}")
    return ensured


@contextmanager
def store_errors(operation: str):
    """Re-raises driver errors as PersistenceFailure. Duplicate keys pass through."""
    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as e:
        raise PersistenceFailure(f"{operation} failed: {e}") from e
