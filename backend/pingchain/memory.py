from datetime import datetime
from typing import List, Optional, Dict
import logging

from pymongo import ASCENDING, DESCENDING

from .models import MemoryEntry, utcnow
from .nlp_analysis import extract_topic_tags, detect_emotion, analyze_sentiment, infer_communication_style
from .utils import strip_mongo_id, days_since

logger = logging.getLogger(__name__)

# ------------------------
# Constants
# ------------------------

MEMORY_LIMIT = 100
SUMMARY_WINDOW = 20
PENDING_ITEM_MARKERS = ["follow up", "remind", "schedule", "meeting"]

# ------------------------
# Context Summary
# ------------------------

def top_counts(values: List[str], limit: int) -> List[str]:
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    # ties keep first-seen order
    return [v for v, _ in sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:limit]]

def calculate_relationship_strength(entries: List[MemoryEntry], now: Optional[datetime] = None) -> float:
    if not entries:
        return 50
    now = now or utcnow()
    score = 50.0

    oldest = min(e.timestamp for e in entries)
    days = days_since(oldest, now)
    if days > 0:
        score += min(len(entries) / days * 10, 20)

    emotional = [e for e in entries if e.emotional_context and e.emotional_context != "neutral"]
    score += len(emotional) / len(entries) * 20

    quality = [e for e in entries if e.response_quality and e.response_quality > 0.7]
    score += len(quality) / len(entries) * 10

    return min(max(score, 0), 100)

def generate_context_summary(entries: List[MemoryEntry], now: Optional[datetime] = None) -> dict:
    """
    Summarises a newest-first list of entries. Only the newest 20 entries
    feed the topic, emotion, style and pending-item fields.
    """
    if not entries:
        return {
            "keyTopics": [],
            "emotionalPatterns": [],
            "communicationStyle": "neutral",
            "relationshipStrength": 50,
            "lastInteraction": None,
            "pendingItems": [],
        }

    recent = entries[:SUMMARY_WINDOW]
    styles = top_counts([e.communication_style.lower() for e in recent if e.communication_style], 1)

    return {
        "keyTopics": top_counts([t for e in recent for t in e.topics], 5),
        "emotionalPatterns": top_counts([e.emotional_context.lower() for e in recent if e.emotional_context], 3),
        "communicationStyle": styles[0] if styles else "neutral",
        "relationshipStrength": calculate_relationship_strength(recent, now),
        "lastInteraction": entries[0].timestamp,
        "pendingItems": [
            e.content for e in recent
            if any(marker in e.content.lower() for marker in PENDING_ITEM_MARKERS)
        ][:3],
    }

# ------------------------
# Memory Store
# ------------------------

class MemoryStore:
    """
    Append-only memory entries per (user, contact) in `conversation_memories`.
    """

    def __init__(self, db):
        self.collection = db["conversation_memories"]

    def ensure_indexes(self):
        self.collection.create_index([("user_id", ASCENDING), ("contact_id", ASCENDING), ("timestamp", DESCENDING)])

    def store_memory(self, user_id: str, contact_id: str, entry: dict) -> str:
        content = entry["content"]

        # Fill in whatever the caller did not annotate
        if not entry.get("topics"):
            entry["topics"] = extract_topic_tags(content)
        if entry.get("emotional_context") is None:
            entry["emotional_context"] = detect_emotion(content)
        if entry.get("sentiment") is None:
            entry["sentiment"] = analyze_sentiment([content])
        if entry.get("communication_style") is None:
            entry["communication_style"] = infer_communication_style(content)

        new_entry = MemoryEntry(user_id=user_id, contact_id=contact_id, **entry).model_dump(exclude={"id"})
        result = self.collection.insert_one(new_entry)
        logger.info(f"Stored memory {result.inserted_id} for {user_id}/{contact_id} (topics: {new_entry['topics']})")
        return str(result.inserted_id)

    def get_entries(self, user_id: str, contact_id: str, limit: int = MEMORY_LIMIT) -> List[MemoryEntry]:
        cursor = self.collection.find({"user_id": user_id, "contact_id": contact_id}) \
            .sort("timestamp", -1) \
            .limit(limit)
        return [MemoryEntry(**strip_mongo_id(doc)) for doc in cursor]

    def get_memory(self, user_id: str, contact_id: str, now: Optional[datetime] = None) -> dict:
        entries = self.get_entries(user_id, contact_id)
        return {
            "userId": user_id,
            "contactId": contact_id,
            "entries": entries,
            "lastUpdated": now or utcnow(),
            "contextSummary": generate_context_summary(entries, now),
        }

    def search_memories(self, user_id: str, contact_id: str, query: str, limit: int = 10) -> List[MemoryEntry]:
        terms = query.lower().split()
        matches = []
        for entry in self.get_entries(user_id, contact_id):
            haystack = " ".join([
                entry.content, entry.context, entry.emotional_context or "", " ".join(entry.topics)
            ]).lower()
            if any(term in haystack for term in terms):
                matches.append(entry)
        return matches[:limit]

    def get_relevant_memories(self, user_id: str, contact_id: str, context: str, limit: int = 5) -> List[MemoryEntry]:
        context_topics = context.lower().split()
        scored = []
        for entry in self.get_entries(user_id, contact_id):
            entry_topics = [t.lower() for t in entry.topics]
            overlap = sum(
                1 for topic in context_topics
                if any(et in topic or topic in et for et in entry_topics)
            )
            denominator = max(len(context_topics), len(entry_topics))
            score = overlap / denominator if denominator else 0
            if score > 0:
                scored.append((score, entry))

        scored.sort(key=lambda x: x[0], reverse=True)
        return [e for _, e in scored[:limit]]

    def delete_all(self, user_id: str) -> int:
        return self.collection.delete_many({"user_id": user_id}).deleted_count
