from datetime import datetime, timezone
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Urgency = Literal["high", "medium", "low"]
Priority = Literal["high", "medium", "low"]
AskedBy = Literal["user", "contact"]
Direction = Literal["outbound", "inbound"]
Health = Literal["excellent", "good", "needs_attention", "at_risk"]
ReminderType = Literal["overdue", "question", "scheduled", "urgent"]
ReminderStatus = Literal["pending", "sent", "dismissed"]
Frequency = Literal["daily", "weekly", "biweekly", "monthly", "quarterly", "yearly"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*", mode="after")
    @classmethod
    def _naive_as_utc(cls, value):
        # Mongo and hand-written JSON both hand us naive datetimes
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# ------------------------
# Stored records
# ------------------------

class Message(CamelModel):
    id: str
    contact_id: str
    user_id: str
    content: str = ""
    platform: str = "email"
    status: str = "sent"
    created_at: datetime = Field(default_factory=utcnow)
    ai_generated: bool = False
    direction: Direction = "outbound"
    contact_name: Optional[str] = None


class Contact(CamelModel):
    id: str
    user_id: str
    name: str
    email: EmailStr
    phone: Optional[str] = None
    platform: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None


class ReminderNotification(CamelModel):
    id: str
    user_id: str
    contact_id: str
    contact_name: str
    message: str
    type: ReminderType = "overdue"
    priority: Priority = "medium"
    created_at: datetime = Field(default_factory=utcnow)
    scheduled_for: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    status: ReminderStatus = "pending"
    persisted: bool = True


class MemoryEntry(CamelModel):
    id: Optional[str] = None
    user_id: str
    contact_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    content: str
    context: str = ""
    emotional_context: Optional[str] = None
    communication_style: Optional[str] = None
    topics: List[str] = []
    response_quality: Optional[float] = None
    action_items: Optional[List[str]] = None
    sentiment: Optional[Literal["positive", "negative", "neutral"]] = None
    urgency: Optional[Urgency] = None
    category: Optional[Literal["personal", "professional", "social"]] = None


class CommunicationContract(CamelModel):
    id: str
    user_id: str
    contact_id: str
    contact_name: str = "Contact"
    frequency: Frequency = "weekly"
    time_of_day: str = "09:00"
    days_of_week: List[int] = [1, 2, 3, 4, 5]
    last_checkin: datetime = Field(default_factory=utcnow)
    next_checkin: datetime
    status: Literal["active", "paused", "completed"] = "active"


# ------------------------
# Derived (never persisted)
# ------------------------

class OpenLoop(CamelModel):
    id: str
    message_id: str
    question: str
    asked_by: AskedBy
    created_at: datetime
    urgency: Urgency
    context: str
    contact_id: Optional[str] = None
    contact_name: Optional[str] = None


class PendingResponse(CamelModel):
    id: str
    message_id: str
    question: str
    asked_by: Literal["contact"] = "contact"
    created_at: datetime
    urgency: Urgency
    suggested_response: Optional[str] = None


class ConversationContext(CamelModel):
    contact_id: str
    contact_name: str
    open_loops: List[OpenLoop] = []
    pending_responses: List[PendingResponse] = []
    conversation_health: Health
    last_interaction: datetime
    response_time: float = 0.0
    engagement_score: int = 100


# ------------------------
# Request bodies
# ------------------------

class ContactCreate(CamelModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    platform: Optional[str] = None


class ContactUpdate(ContactCreate):
    id: str


class MessageCreate(CamelModel):
    contact_id: str
    content: str
    platform: str = "email"
    direction: Direction = "outbound"
    ai_generated: bool = False
    created_at: Optional[datetime] = None


class ReminderCreate(CamelModel):
    contact_id: str
    contact_name: str
    message: str
    type: ReminderType = "overdue"
    priority: Priority = "medium"
    scheduled_for: Optional[datetime] = None


class ReminderUpdate(CamelModel):
    status: Optional[ReminderStatus] = None
    sent_at: Optional[datetime] = None
    scheduled_for: Optional[datetime] = None
    priority: Optional[Priority] = None
    message: Optional[str] = None


class SnoozeRequest(CamelModel):
    hours: float = 1.0


class LoopsRequest(CamelModel):
    open_loops: Optional[List[OpenLoop]] = None


class ContractCreate(CamelModel):
    contact_id: str
    contact_name: str = "Contact"
    frequency: Frequency = "weekly"
    time_of_day: str = Field("09:00", pattern=r"^\d{2}:\d{2}$")
    days_of_week: List[int] = [1, 2, 3, 4, 5]


class SuggestionRequest(CamelModel):
    contact: Optional[str] = None
    previous_messages: Optional[List[str]] = None
    tone: str = "friendly"  # unknown tones fall back to friendly
    context: Optional[str] = None
    use_ai: bool = Field(False, alias="useAI")


class MemoryCreate(CamelModel):
    contact_id: Optional[str] = None
    content: Optional[str] = None
    context: str = ""
    emotional_context: Optional[str] = None
    communication_style: Optional[str] = None
    topics: Optional[List[str]] = None
    response_quality: Optional[float] = None
    action_items: Optional[List[str]] = None
    sentiment: Optional[Literal["positive", "negative", "neutral"]] = None
    urgency: Optional[Urgency] = None
    category: Optional[Literal["personal", "professional", "social"]] = None


class CustomTimeRange(BaseModel):
    start: datetime
    end: datetime


class AnalyticsRequest(CamelModel):
    custom_time_range: Optional[CustomTimeRange] = None
