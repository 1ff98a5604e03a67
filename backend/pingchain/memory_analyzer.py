# pingchain/memory_analyzer.py
from datetime import datetime
from typing import List, Optional, Dict

from .conversation_analysis import RESPONSE_GAP_CAP
from .memory import MemoryStore, top_counts
from .models import MemoryEntry, utcnow
from .utils import HOUR

POSITIVE_EMOTIONS = ["happy", "excited", "positive", "joy"]
NEGATIVE_EMOTIONS = ["frustrated", "concerned", "negative", "anger", "sadness", "fear"]
MILESTONE_EMOTIONS = ["excited", "happy", "concerned", "frustrated"]


def _chronological(entries: List[MemoryEntry]) -> List[MemoryEntry]:
    return sorted(entries, key=lambda e: e.timestamp)


def _gaps_in_hours(entries: List[MemoryEntry]) -> List[float]:
    ordered = _chronological(entries)
    return [
        (later.timestamp - earlier.timestamp).total_seconds() / HOUR
        for earlier, later in zip(ordered, ordered[1:])
        if later.timestamp > earlier.timestamp
    ]

# ----------------------------------
# Analysis
# ----------------------------------

def average_response_time(entries: List[MemoryEntry]) -> float:
    cap = RESPONSE_GAP_CAP.total_seconds() / HOUR
    gaps = [g for g in _gaps_in_hours(entries) if g <= cap]
    return sum(gaps) / len(gaps) if gaps else 0


def top_topics(entries: List[MemoryEntry], limit: int = 10) -> List[dict]:
    counts: Dict[str, int] = {}
    for entry in entries:
        for topic in entry.topics:
            counts[topic] = counts.get(topic, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:limit]
    return [{"topic": t, "frequency": f} for t, f in ranked]


def emotional_trends(entries: List[MemoryEntry]) -> List[dict]:
    """
    Compares how often each emotion shows up in the older vs newer half of
    the conversation timeline.
    """
    ordered = _chronological(entries)
    if not ordered:
        return []
    midpoint_time = ordered[len(ordered) // 2].timestamp

    by_emotion: Dict[str, List[datetime]] = {}
    for entry in ordered:
        if entry.emotional_context:
            by_emotion.setdefault(entry.emotional_context.lower(), []).append(entry.timestamp)

    trends = []
    for emotion, stamps in by_emotion.items():
        if len(stamps) < 3:
            continue
        early = sum(1 for s in stamps if s < midpoint_time)
        late = len(stamps) - early
        if late > early * 1.5:
            trend = "increasing"
        elif early > late * 1.5:
            trend = "decreasing"
        else:
            trend = "stable"
        trends.append({"emotion": emotion, "trend": trend})
    return trends


def communication_evolution(entries: List[MemoryEntry]) -> List[dict]:
    if len(entries) < 4:
        return []
    ordered = _chronological(entries)
    n = len(ordered)
    periods = [("Early", 0, int(n * 0.33)), ("Middle", int(n * 0.33), int(n * 0.66)), ("Recent", int(n * 0.66), n)]

    evolution = []
    for name, start, end in periods:
        styles = top_counts([e.communication_style.lower() for e in ordered[start:end] if e.communication_style], 1)
        evolution.append({"period": name, "style": styles[0] if styles else "neutral"})
    return evolution


def relationship_milestones(entries: List[MemoryEntry]) -> List[dict]:
    if not entries:
        return []
    ordered = _chronological(entries)
    milestones = [{"date": ordered[0].timestamp, "milestone": "First interaction"}]

    for entry in ordered:
        if entry.emotional_context and entry.emotional_context.lower() in MILESTONE_EMOTIONS:
            milestones.append({"date": entry.timestamp, "milestone": f"Emotional moment: {entry.emotional_context}"})
    for entry in ordered:
        if entry.response_quality and entry.response_quality > 0.8:
            milestones.append({"date": entry.timestamp, "milestone": "High-quality interaction"})

    milestones.sort(key=lambda m: m["date"])
    return milestones[:10]

# ----------------------------------
# Insights
# ----------------------------------

def _insight(kind, title, description, confidence, actionable, related, now):
    return {
        "type": kind,
        "title": title,
        "description": description,
        "confidence": confidence,
        "actionable": actionable,
        "relatedMemories": [e.id for e in related],
        "timestamp": now,
    }


def response_pattern_insight(entries, now):
    gaps = _gaps_in_hours(entries)
    if not gaps:
        return None
    average = sum(gaps) / len(gaps)
    recent = gaps[-5:]
    recent_average = sum(recent) / len(recent)
    if average > 0 and recent_average < average * 0.7:
        improvement = round((1 - recent_average / average) * 100)
        return _insight("trend", "Improving Response Time",
                        f"Response time has improved by {improvement}% recently",
                        0.8, False, _chronological(entries)[-5:], now)
    return None


def topic_evolution_insight(entries, now):
    ordered = _chronological(entries)
    half = len(ordered) // 2
    early = {t for e in ordered[:half] for t in e.topics}
    new_topics = []
    for entry in ordered[half:]:
        for topic in entry.topics:
            if topic not in early and topic not in new_topics:
                new_topics.append(topic)
    if len(new_topics) > 2:
        return _insight("pattern", "Expanding Conversation Topics",
                        f"Conversation has expanded to include new topics: {', '.join(new_topics[:3])}",
                        0.7, True, ordered[-3:], now)
    return None


def emotional_pattern_insight(entries, now):
    emotions = [e.emotional_context.lower() for e in entries if e.emotional_context]
    positive = sum(1 for e in emotions if e in POSITIVE_EMOTIONS)
    negative = sum(1 for e in emotions if e in NEGATIVE_EMOTIONS)
    related = _chronological(entries)[-5:]

    if positive > negative * 2:
        return _insight("pattern", "Positive Emotional Pattern",
                        "Conversations show predominantly positive emotions", 0.8, False, related, now)
    if negative > positive * 2:
        return _insight("risk", "Negative Emotional Pattern",
                        "Conversations show predominantly negative emotions", 0.8, True, related, now)
    return None


def style_change_insight(entries, now):
    styles = [e.communication_style for e in _chronological(entries) if e.communication_style]
    if len(styles) < 4:
        return None
    half = len(styles) // 2
    early_formal = sum(1 for s in styles[:half] if "formal" in s.lower())
    recent_formal = sum(1 for s in styles[half:] if "formal" in s.lower())
    if recent_formal < early_formal * 0.5:
        return _insight("trend", "Communication Becoming More Casual",
                        "Communication style has become more casual over time",
                        0.7, False, _chronological(entries)[-3:], now)
    return None


def opportunity_insight(entries, now):
    high_quality = [e for e in _chronological(entries)[-5:] if e.response_quality and e.response_quality > 0.8]
    if len(high_quality) >= 3:
        return _insight("opportunity", "High-Quality Interaction Pattern",
                        "Recent interactions show high quality. Consider deepening the relationship.",
                        0.9, True, high_quality, now)
    return None


def risk_insight(entries, now):
    low_quality = [e for e in _chronological(entries)[-3:] if e.response_quality and e.response_quality < 0.4]
    if len(low_quality) >= 2:
        return _insight("risk", "Declining Interaction Quality",
                        "Recent interactions show declining quality. Consider addressing communication issues.",
                        0.8, True, low_quality, now)
    return None


INSIGHT_RULES = [
    response_pattern_insight,
    topic_evolution_insight,
    emotional_pattern_insight,
    style_change_insight,
    opportunity_insight,
    risk_insight,
]


class MemoryAnalyzer:

    def __init__(self, store: MemoryStore):
        self.store = store

    def analyze_conversation(self, user_id: str, contact_id: str) -> dict:
        entries = self.store.get_entries(user_id, contact_id)
        return analyze_entries(entries)

    def generate_insights(self, user_id: str, contact_id: str, now: Optional[datetime] = None) -> List[dict]:
        entries = self.store.get_entries(user_id, contact_id)
        return insights_for_entries(entries, now)


def analyze_entries(entries: List[MemoryEntry]) -> dict:
    return {
        "totalInteractions": len(entries),
        "averageResponseTime": average_response_time(entries),
        "topTopics": top_topics(entries),
        "emotionalTrends": emotional_trends(entries),
        "communicationEvolution": communication_evolution(entries),
        "relationshipMilestones": relationship_milestones(entries),
    }


def insights_for_entries(entries: List[MemoryEntry], now: Optional[datetime] = None) -> List[dict]:
    if len(entries) < 3:
        return []
    now = now or utcnow()
    insights = [i for i in (rule(entries, now) for rule in INSIGHT_RULES) if i]
    return sorted(insights, key=lambda i: i["confidence"], reverse=True)
