# pingchain/storage.py
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING

from .models import Contact, Message, utcnow
from .utils import strip_mongo_id

MESSAGE_PAGE_SIZE = 50


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class ContactStore:
    """`contacts` collection, every query scoped by the owning user."""

    def __init__(self, db):
        self.collection = db["contacts"]

    def ensure_indexes(self):
        self.collection.create_index([("user_id", ASCENDING)])

    def create(self, user_id: str, name: str, email: str, phone: Optional[str] = None,
               platform: Optional[str] = None) -> Contact:
        doc = {
            "user_id": user_id,
            "name": name,
            "email": email,
            "created_at": utcnow(),
        }
        # Optional fields are left out rather than stored as null
        if phone is not None:
            doc["phone"] = phone
        if platform is not None:
            doc["platform"] = platform
        result = self.collection.insert_one(doc)
        return Contact(id=str(result.inserted_id), **{k: v for k, v in doc.items() if k != "_id"})

    def list(self, user_id: str) -> List[Contact]:
        return [Contact(**strip_mongo_id(d)) for d in self.collection.find({"user_id": user_id})]

    def get(self, user_id: str, contact_id: str) -> Optional[Contact]:
        obj_id = _object_id(contact_id)
        if obj_id is None:
            return None
        doc = self.collection.find_one({"_id": obj_id, "user_id": user_id})
        return Contact(**strip_mongo_id(doc)) if doc else None

    def update(self, user_id: str, contact_id: str, name: str, email: str,
               phone: Optional[str] = None) -> bool:
        obj_id = _object_id(contact_id)
        if obj_id is None:
            return False
        result = self.collection.update_one(
            {"_id": obj_id, "user_id": user_id},
            {"$set": {"name": name, "email": email, "phone": phone or "", "updated_at": utcnow()}},
        )
        return result.matched_count == 1

    def delete(self, user_id: str, contact_id: str) -> bool:
        obj_id = _object_id(contact_id)
        if obj_id is None:
            return False
        result = self.collection.delete_one({"_id": obj_id, "user_id": user_id})
        return result.deleted_count == 1

    def delete_all(self, user_id: str) -> int:
        return self.collection.delete_many({"user_id": user_id}).deleted_count


class MessageStore:
    """`messages` collection. Only `status` changes after insert."""

    def __init__(self, db):
        self.collection = db["messages"]

    def ensure_indexes(self):
        self.collection.create_index([("user_id", ASCENDING), ("contact_id", ASCENDING), ("created_at", DESCENDING)])

    def add(self, user_id: str, contact_id: str, content: str, platform: str = "email",
            direction: str = "outbound", ai_generated: bool = False,
            created_at: Optional[datetime] = None, contact_name: Optional[str] = None) -> Message:
        doc = {
            "user_id": user_id,
            "contact_id": contact_id,
            "content": content,
            "platform": platform,
            "status": "sent" if direction == "outbound" else "received",
            "direction": direction,
            "ai_generated": ai_generated,
            "created_at": created_at or utcnow(),
        }
        if contact_name:
            doc["contact_name"] = contact_name
        result = self.collection.insert_one(doc)
        return Message(id=str(result.inserted_id), **{k: v for k, v in doc.items() if k != "_id"})

    def for_contact(self, user_id: str, contact_id: str, limit: int = MESSAGE_PAGE_SIZE) -> List[Message]:
        cursor = self.collection.find({"user_id": user_id, "contact_id": contact_id}) \
            .sort("created_at", -1) \
            .limit(limit)
        return [Message(**strip_mongo_id(d)) for d in cursor]

    def for_user(self, user_id: str, start: Optional[datetime] = None,
                 end: Optional[datetime] = None) -> List[Message]:
        query = {"user_id": user_id}
        if start or end:
            query["created_at"] = {}
            if start:
                query["created_at"]["$gte"] = start
            if end:
                query["created_at"]["$lte"] = end
        cursor = self.collection.find(query).sort("created_at", -1)
        return [Message(**strip_mongo_id(d)) for d in cursor]

    def set_status(self, user_id: str, message_id: str, status: str) -> bool:
        obj_id = _object_id(message_id)
        if obj_id is None:
            return False
        result = self.collection.update_one({"_id": obj_id, "user_id": user_id}, {"$set": {"status": status}})
        return result.matched_count == 1

    def delete_all(self, user_id: str) -> int:
        return self.collection.delete_many({"user_id": user_id}).deleted_count
