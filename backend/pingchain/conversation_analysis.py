# pingchain/conversation_analysis.py
"""
Open loop detection and conversation health.

Every function here is a pure function of the message list and the
evaluation time `now`; nothing is cached between requests.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from .models import (
    Message, OpenLoop, PendingResponse, ConversationContext, utcnow,
)
from .utils import hours_since, days_since, HOUR

# ----------------------------------
# Keyword tables
# ----------------------------------

QUESTION_KEYWORDS = [
    "what do you think", "can you", "could you", "would you", "when", "where", "how", "why",
    "do you want", "are you", "is it", "will you", "should we", "can we", "what time",
    "what about", "how about", "what if", "do you have", "are you free", "are you available",
]

URGENT_KEYWORDS = ["urgent", "asap", "emergency", "important", "deadline", "critical"]

# Evaluated in order, first hit wins.
CONTEXT_KEYWORDS = [
    ("meeting", ["meet", "call"]),
    ("work", ["project", "work"]),
    ("personal", ["weekend", "holiday"]),
    ("appreciation", ["thank"]),
    ("apology", ["sorry", "apologize"]),
]

URGENCY_ORDER = {"high": 3, "medium": 2, "low": 1}

# Gaps longer than this start a new conversation instead of counting as a slow reply.
RESPONSE_GAP_CAP = timedelta(days=7)

# ----------------------------------
# Question / loop detection
# ----------------------------------

def is_question(content: str) -> bool:
    text = (content or "").lower()
    if not text:
        return False
    return "?" in text or any(kw in text for kw in QUESTION_KEYWORDS)


def asked_by(message: Message) -> str:
    return "user" if message.direction == "outbound" else "contact"

# ----------------------------------
# Urgency & context
# ----------------------------------

def determine_urgency(message: Message, all_messages: Optional[List[Message]] = None,
                      now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    content = message.content.lower()

    if any(kw in content for kw in URGENT_KEYWORDS):
        return "high"

    age = hours_since(message.created_at, now)
    if age > 48:
        return "high"
    if age > 24:
        return "medium"
    return "low"


def extract_context(content: str) -> str:
    text = (content or "").lower()
    for context, keywords in CONTEXT_KEYWORDS:
        if any(kw in text for kw in keywords):
            return context
    return "general"

# ----------------------------------
# Health aggregation
# ----------------------------------

def latest_message(messages: List[Message]) -> Optional[Message]:
    if not messages:
        return None
    return max(messages, key=lambda m: m.created_at)


def calculate_conversation_health(messages: List[Message], open_loops: List[OpenLoop],
                                  now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    last = latest_message(messages)
    age_days = days_since(last.created_at, now) if last else 0
    loops = len(open_loops)

    if loops == 0 and age_days < 1:
        return "excellent"
    if loops <= 1 and age_days < 3:
        return "good"
    if loops <= 2 and age_days < 7:
        return "needs_attention"
    return "at_risk"


def calculate_average_response_time(messages: List[Message],
                                    max_gap: Optional[timedelta] = RESPONSE_GAP_CAP) -> float:
    """
    Mean hours between consecutive messages written by different parties.
    Pairs further apart than `max_gap` are left out; pass None to keep them.
    """
    if len(messages) < 2:
        return 0.0

    ordered = sorted(messages, key=lambda m: m.created_at)
    total = 0.0
    count = 0
    for current, following in zip(ordered, ordered[1:]):
        if current.direction == following.direction:
            continue
        gap = following.created_at - current.created_at
        if max_gap is not None and gap > max_gap:
            continue
        total += gap.total_seconds() / HOUR
        count += 1

    return total / count if count else 0.0


def calculate_engagement_score(messages: List[Message], open_loops: List[OpenLoop],
                               now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    score = 100 - 10 * len(open_loops)

    last = latest_message(messages)
    if last:
        age_hours = hours_since(last.created_at, now)
        age_days = age_hours / 24
        if age_days > 7:
            score -= 30
        elif age_days > 3:
            score -= 15

        if age_hours < 1:
            score += 10
        elif age_hours < 24:
            score += 5

    return max(0, min(100, score))

# ----------------------------------
# Full analysis
# ----------------------------------

def detect_open_loops(messages: List[Message], now: Optional[datetime] = None) -> List[OpenLoop]:
    now = now or utcnow()
    loops = []
    for message in messages:
        if not is_question(message.content):
            continue
        loops.append(OpenLoop(
            id=f"loop_{message.id}",
            message_id=message.id,
            question=message.content,
            asked_by=asked_by(message),
            created_at=message.created_at,
            urgency=determine_urgency(message, messages, now),
            context=extract_context(message.content),
            contact_id=message.contact_id,
            contact_name=message.contact_name,
        ))
    return loops


def pending_responses(open_loops: List[OpenLoop]) -> List[PendingResponse]:
    return [
        PendingResponse(
            id=f"pending_{loop.message_id}",
            message_id=loop.message_id,
            question=loop.question,
            created_at=loop.created_at,
            urgency=loop.urgency,
        )
        for loop in open_loops
        if loop.asked_by == "contact"
    ]


def analyze_conversation(messages: List[Message], contact_id: str,
                         contact_name: Optional[str] = None,
                         now: Optional[datetime] = None) -> ConversationContext:
    now = now or utcnow()
    contact_messages = [m for m in messages if m.contact_id == contact_id]
    open_loops = detect_open_loops(contact_messages, now)
    last = latest_message(contact_messages)

    if contact_name is None:
        contact_name = next((m.contact_name for m in contact_messages if m.contact_name), "Unknown")

    return ConversationContext(
        contact_id=contact_id,
        contact_name=contact_name,
        open_loops=open_loops,
        pending_responses=pending_responses(open_loops),
        conversation_health=calculate_conversation_health(contact_messages, open_loops, now),
        last_interaction=last.created_at if last else now,
        response_time=calculate_average_response_time(contact_messages),
        engagement_score=calculate_engagement_score(contact_messages, open_loops, now),
    )


def generate_context_aware_suggestion(context: ConversationContext, last_message: str) -> str:
    if context.pending_responses:
        most_urgent = max(context.pending_responses, key=lambda p: URGENCY_ORDER[p.urgency])
        return f'I should respond to: "{most_urgent.question}"'

    if context.conversation_health == "at_risk":
        return f"Time to re-engage with {context.contact_name}. The conversation has been quiet."

    topic = extract_context(last_message)
    if topic == "meeting":
        return f"Follow up on the meeting discussion with {context.contact_name}"
    if topic == "work":
        return f"Check in on the project progress with {context.contact_name}"
    if topic == "personal":
        return f"Send a personal check-in to {context.contact_name}"
    return f"Continue the conversation with {context.contact_name}"
