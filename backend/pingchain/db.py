# pingchain/db.py
import logging
from pymongo import MongoClient
from pymongo.server_api import ServerApi

from .config import MONGO_URI, MONGO_DB_NAME

logger = logging.getLogger(__name__)


def get_database(uri: str = MONGO_URI, db_name: str = MONGO_DB_NAME):
    """
    Builds the MongoDB client and returns the application database.
    MongoClient connects lazily, so this never blocks at startup.
    """
    client = MongoClient(uri, server_api=ServerApi("1"), tz_aware=True)
    return client[db_name]


def ping(db) -> bool:
    try:
        db.client.admin.command("ping")
        logger.info("Pinged your deployment. Successfully connected to MongoDB!")
        return True
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        return False
