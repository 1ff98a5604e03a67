# pingchain/analytics.py
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from .models import Contact, Message, utcnow
from .nlp_analysis import analyze_sentiment
from .utils import HOUR

TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
DEFAULT_TIME_RANGE = "30d"
TOP_CONTACTS = 10


def time_range_bounds(time_range: Optional[str], now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    now = now or utcnow()
    days = TIME_RANGES.get(time_range or DEFAULT_TIME_RANGE, TIME_RANGES[DEFAULT_TIME_RANGE])
    return now - timedelta(days=days), now


def _response_rate(messages: List[Message]) -> float:
    sent = sum(1 for m in messages if m.direction == "outbound")
    received = len(messages) - sent
    return (received / sent) * 100 if sent else 0


def average_response_time(messages: List[Message]) -> float:
    """Mean hours from each outbound message to the first later inbound one from the same contact."""
    received = [m for m in messages if m.direction == "inbound"]
    times = []
    for sent in (m for m in messages if m.direction == "outbound"):
        replies = [r.created_at for r in received
                   if r.contact_id == sent.contact_id and r.created_at > sent.created_at]
        if replies:
            times.append((min(replies) - sent.created_at).total_seconds() / HOUR)
    return sum(times) / len(times) if times else 0


def engagement_score(total_contacts: int, total_messages: int, response_rate: float) -> float:
    contact_engagement = min(total_contacts / 100, 1)
    message_engagement = min(total_messages / 500, 1)
    response_engagement = response_rate / 100
    return (contact_engagement + message_engagement + response_engagement) / 3 * 100


def top_contacts(contacts: List[Contact], by_contact: Dict[str, List[Message]]) -> List[dict]:
    performance = []
    for contact in contacts:
        contact_messages = by_contact.get(contact.id, [])
        last = max((m.created_at for m in contact_messages), default=None)
        performance.append({
            "id": contact.id,
            "name": contact.name or contact.email,
            "messageCount": len(contact_messages),
            "responseRate": _response_rate(contact_messages),
            "lastContact": last,
        })
    performance.sort(key=lambda p: p["messageCount"], reverse=True)
    return performance[:TOP_CONTACTS]


def message_trends(messages: List[Message], start: datetime, end: datetime) -> List[dict]:
    # both ends inclusive, so a 7 day window spans 8 calendar days
    days = (end.date() - start.date()).days + 1
    per_day: Dict[str, List[Message]] = {}
    for message in messages:
        per_day.setdefault(message.created_at.date().isoformat(), []).append(message)

    trends = []
    for i in range(days):
        day = (start + timedelta(days=i)).date().isoformat()
        day_messages = per_day.get(day, [])
        sent = sum(1 for m in day_messages if m.direction == "outbound")
        received = len(day_messages) - sent
        trends.append({
            "date": day,
            "sent": sent,
            "received": received,
            "responseRate": (received / sent) * 100 if sent else 0,
        })
    return trends


def platform_breakdown(messages: List[Message]) -> List[dict]:
    counts: Dict[str, int] = {}
    for message in messages:
        platform = message.platform or "unknown"
        counts[platform] = counts.get(platform, 0) + 1
    return [
        {"platform": p, "count": c, "percentage": c / len(messages) * 100}
        for p, c in counts.items()
    ]


def conversation_insights(by_contact: Dict[str, List[Message]], names: Dict[str, str]) -> List[dict]:
    insights = []
    for contact_id, contact_messages in by_contact.items():
        insights.append({
            "contactId": contact_id,
            "contactName": names.get(contact_id)
            or next((m.contact_name for m in contact_messages if m.contact_name), "Unknown Contact"),
            "conversationCount": len(contact_messages),
            "averageLength": sum(len(m.content) for m in contact_messages) / len(contact_messages),
            "sentiment": analyze_sentiment([m.content for m in contact_messages]),
            "lastActivity": max(m.created_at for m in contact_messages),
        })
    insights.sort(key=lambda i: i["lastActivity"], reverse=True)
    return insights[:TOP_CONTACTS]


def build_metrics(user_id: str, contacts: List[Contact], messages: List[Message],
                  start: datetime, end: datetime) -> dict:
    """
    Aggregates a user's activity between `start` and `end`. Contacts count
    when they were created in the window, messages when they were written
    in it.
    """
    contacts = [c for c in contacts if c.user_id == user_id and start <= c.created_at <= end]
    messages = [m for m in messages if m.user_id == user_id and start <= m.created_at <= end]

    by_contact: Dict[str, List[Message]] = {}
    for message in messages:
        by_contact.setdefault(message.contact_id, []).append(message)

    response_rate = _response_rate(messages)
    return {
        "totalContacts": len(contacts),
        "totalMessages": len(messages),
        "responseRate": response_rate,
        "averageResponseTime": average_response_time(messages),
        "engagementScore": engagement_score(len(contacts), len(messages), response_rate),
        "topPerformingContacts": top_contacts(contacts, by_contact),
        "messageTrends": message_trends(messages, start, end),
        "platformBreakdown": platform_breakdown(messages),
        "conversationInsights": conversation_insights(by_contact, {c.id: c.name for c in contacts}),
    }
