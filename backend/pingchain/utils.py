# In pingchain/utils.py

from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)

HOUR = 60 * 60
DAY = 24 * HOUR


def safe_bson_date(value, default: Optional[datetime] = None) -> Optional[datetime]:
    """
    Normalises anything a record may carry as a timestamp (datetime from
    MongoDB, ISO string from JSON) into a timezone-aware UTC datetime.
    Naive datetimes are treated as UTC. Unparseable input returns `default`.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable timestamp {value!r}, using default")
            return default
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return default


def hours_since(then: datetime, now: datetime) -> float:
    return (now - then).total_seconds() / HOUR


def days_since(then: datetime, now: datetime) -> float:
    return (now - then).total_seconds() / DAY


def strip_mongo_id(doc: dict) -> dict:
    """Maps Mongo's `_id` onto the `id` field our models use."""
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return doc
