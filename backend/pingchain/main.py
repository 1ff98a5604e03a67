import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from pingchain.analytics import build_metrics, time_range_bounds
from pingchain.auth import verify_token
from pingchain.config import ALLOWED_ORIGINS
from pingchain.contracts import ContractStore
from pingchain.conversation_analysis import analyze_conversation, generate_context_aware_suggestion, latest_message
from pingchain.db import get_database, ping
from pingchain.memory import MemoryStore
from pingchain.memory_analyzer import MemoryAnalyzer
from pingchain.models import (
    ContactCreate, ContactUpdate, MessageCreate, ReminderCreate, ReminderUpdate,
    SnoozeRequest, LoopsRequest, ContractCreate, SuggestionRequest, MemoryCreate,
    AnalyticsRequest, utcnow,
)
from pingchain.reminders import ReminderStore, ReminderScheduler, ReminderStateError, process_reminders, effectiveness_stats
from pingchain.storage import ContactStore, MessageStore
from pingchain.suggestions import generate_suggestion
from pingchain.utils import safe_bson_date

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ------------------------
# Composition root
# ------------------------

class Services:
    """Every store and service the routes use, built once per process."""

    def __init__(self, contacts: ContactStore, messages: MessageStore, reminder_store: ReminderStore,
                 contracts: ContractStore, memory: MemoryStore):
        self.contacts = contacts
        self.messages = messages
        self.reminder_store = reminder_store
        self.reminders = ReminderScheduler(reminder_store)
        self.contracts = contracts
        self.memory = memory
        self.memory_analyzer = MemoryAnalyzer(memory)

    def ensure_indexes(self):
        for store in (self.contacts, self.messages, self.reminder_store, self.contracts, self.memory):
            store.ensure_indexes()


def build_services(db) -> Services:
    return Services(
        ContactStore(db),
        MessageStore(db),
        ReminderStore(db),
        ContractStore(db),
        MemoryStore(db),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = get_database()
    ping(db)
    services = build_services(db)
    try:
        services.ensure_indexes()
    except PyMongoError as e:
        logger.error(f"Could not create indexes: {e}")
    app.state.services = services
    yield


def get_services(request: Request) -> Services:
    return request.app.state.services


app = FastAPI(title="PingChain", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": utcnow()}

# ------------------------
# Contacts
# ------------------------

@app.post("/api/contacts")
def create_contact(body: ContactCreate, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    contact = services.contacts.create(user_id, body.name, body.email, body.phone, body.platform)
    logger.info(f"Created contact {contact.id} for {user_id}")
    return contact


@app.get("/api/contacts")
def list_contacts(user_id: str = Depends(verify_token), services: Services = Depends(get_services)):
    return services.contacts.list(user_id)


@app.patch("/api/contacts")
def update_contact(body: ContactUpdate, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    if not services.contacts.update(user_id, body.id, body.name, body.email, body.phone):
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"success": True}


@app.delete("/api/contacts")
def delete_contact(id: Optional[str] = None, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    if not id:
        raise HTTPException(status_code=400, detail="Contact ID is required")
    if not services.contacts.delete(user_id, id):
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"success": True}

# ------------------------
# Messages & conversations
# ------------------------

@app.post("/api/messages")
def create_message(body: MessageCreate, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    contact = services.contacts.get(user_id, body.contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return services.messages.add(
        user_id, contact.id, body.content, body.platform, body.direction,
        body.ai_generated, body.created_at, contact.name,
    )


@app.get("/api/messages")
def list_messages(contact_id: Optional[str] = Query(None, alias="contactId"),
                  user_id: str = Depends(verify_token), services: Services = Depends(get_services)):
    if not contact_id:
        raise HTTPException(status_code=400, detail="Contact ID is required")
    return services.messages.for_contact(user_id, contact_id)


@app.patch("/api/messages/{message_id}")
def update_message_status(message_id: str, body: dict, user_id: str = Depends(verify_token),
                          services: Services = Depends(get_services)):
    status = body.get("status")
    if not status:
        raise HTTPException(status_code=400, detail="Status is required")
    if not services.messages.set_status(user_id, message_id, status):
        raise HTTPException(status_code=404, detail="Message not found")
    return {"success": True}


@app.get("/api/conversations/{contact_id}")
def get_conversation(contact_id: str, user_id: str = Depends(verify_token),
                     services: Services = Depends(get_services)):
    contact = services.contacts.get(user_id, contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")

    messages = [
        m.model_copy(update={"contact_name": m.contact_name or contact.name})
        for m in services.messages.for_contact(user_id, contact_id)
    ]
    context = analyze_conversation(messages, contact_id, contact.name)
    last = latest_message(messages)
    return {
        "context": context,
        "suggestion": generate_context_aware_suggestion(context, last.content if last else ""),
    }

# ------------------------
# Reminders
# ------------------------

@app.post("/api/reminders")
def run_reminders(body: LoopsRequest, user_id: str = Depends(verify_token),
                  services: Services = Depends(get_services)):
    if body.open_loops is None:
        raise HTTPException(status_code=400, detail="Open loops data required")
    logger.info(f"Processing reminders for user {user_id} with {len(body.open_loops)} open loops")
    result = process_reminders(services.reminders, user_id, body.open_loops, services.contracts)
    return {"success": True, "processedLoops": len(body.open_loops), **result}


@app.get("/api/reminders")
def list_reminders(status: Optional[str] = None, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    return {"reminders": services.reminders.list_reminders(user_id, status)}


@app.post("/api/reminders/create")
def create_reminder(body: ReminderCreate, user_id: str = Depends(verify_token),
                    services: Services = Depends(get_services)):
    reminder_id = services.reminders.create_reminder(
        user_id, body.contact_id, body.contact_name, body.message,
        body.type, body.priority, body.scheduled_for,
    )
    return {"success": True, "reminderId": reminder_id}


@app.get("/api/reminders/stats/{contact_id}")
def reminder_stats(contact_id: str, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    reminders = [r for r in services.reminders.list_reminders(user_id) if r.contact_id == contact_id]
    return effectiveness_stats(reminders)


@app.patch("/api/reminders/{reminder_id}")
def update_reminder(reminder_id: str, body: ReminderUpdate, user_id: str = Depends(verify_token),
                    services: Services = Depends(get_services)):
    fields = body.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    reminder = services.reminders.get_reminder(user_id, reminder_id)
    if reminder is None:
        raise HTTPException(status_code=404, detail="Reminder not found")
    if "status" in fields and fields["status"] != reminder.status and reminder.status != "pending":
        raise HTTPException(status_code=409, detail=f"Reminder is already {reminder.status}")

    services.reminders.update_reminder(user_id, reminder_id, fields)
    return {"success": True}


def _transition(action, *args, **kwargs):
    try:
        reminder = action(*args, **kwargs)
    except ReminderStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if reminder is None:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


@app.post("/api/reminders/{reminder_id}/snooze")
def snooze_reminder(reminder_id: str, body: Optional[SnoozeRequest] = None,
                    user_id: str = Depends(verify_token), services: Services = Depends(get_services)):
    hours = body.hours if body else 1.0
    if hours <= 0:
        raise HTTPException(status_code=400, detail="Snooze hours must be positive")
    return _transition(services.reminders.snooze, user_id, reminder_id, hours)


@app.post("/api/reminders/{reminder_id}/respond")
def respond_to_reminder(reminder_id: str, user_id: str = Depends(verify_token),
                        services: Services = Depends(get_services)):
    return _transition(services.reminders.respond, user_id, reminder_id)


@app.post("/api/reminders/{reminder_id}/dismiss")
def dismiss_reminder(reminder_id: str, user_id: str = Depends(verify_token),
                     services: Services = Depends(get_services)):
    return _transition(services.reminders.dismiss, user_id, reminder_id)


@app.delete("/api/reminders/{reminder_id}")
def delete_reminder(reminder_id: str, user_id: str = Depends(verify_token),
                    services: Services = Depends(get_services)):
    if not services.reminders.delete_reminder(user_id, reminder_id):
        raise HTTPException(status_code=404, detail="Reminder not found")
    return {"success": True}


@app.delete("/api/reminders")
def clear_reminders(user_id: str = Depends(verify_token), services: Services = Depends(get_services)):
    return {"success": True, "deleted": services.reminders.clear_all_reminders(user_id)}

# ------------------------
# Contracts
# ------------------------

@app.post("/api/contracts")
def create_contract(body: ContractCreate, user_id: str = Depends(verify_token),
                    services: Services = Depends(get_services)):
    try:
        return services.contracts.create(
            user_id, body.contact_id, body.contact_name, body.frequency,
            body.time_of_day, body.days_of_week,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/contracts")
def list_contracts(status: Optional[str] = None, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    return {"contracts": services.contracts.list(user_id, status)}

# ------------------------
# Analytics
# ------------------------

def _analytics_response(user_id: str, services: Services, start, end):
    metrics = build_metrics(
        user_id,
        services.contacts.list(user_id),
        services.messages.for_user(user_id, start, end),
        start,
        end,
    )
    return {
        "success": True,
        "metrics": metrics,
        "timeRange": {"start": start, "end": end},
        "generatedAt": utcnow(),
    }


@app.get("/api/analytics")
def get_analytics(time_range: Optional[str] = Query(None, alias="timeRange"),
                  user_id: str = Depends(verify_token), services: Services = Depends(get_services)):
    start, end = time_range_bounds(time_range)
    return _analytics_response(user_id, services, start, end)


@app.post("/api/analytics")
def post_analytics(body: Optional[AnalyticsRequest] = None, user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    if body and body.custom_time_range:
        start = safe_bson_date(body.custom_time_range.start)
        end = safe_bson_date(body.custom_time_range.end)
        if start > end:
            raise HTTPException(status_code=400, detail="Time range start is after its end")
    else:
        end = utcnow()
        start = end - timedelta(days=30)
    return _analytics_response(user_id, services, start, end)

# ------------------------
# AI suggestions
# ------------------------

@app.post("/api/ai/generate-message")
def generate_message(body: SuggestionRequest, user_id: str = Depends(verify_token)):
    if not body.contact or body.previous_messages is None:
        raise HTTPException(status_code=400, detail="Missing required fields: contact, previousMessages")
    suggestion = generate_suggestion(
        body.contact, body.previous_messages, body.tone, body.context, body.use_ai,
    )
    return {"suggestion": suggestion}

# ------------------------
# Conversation memory
# ------------------------

@app.post("/api/memory/store")
def store_memory(body: MemoryCreate, user_id: str = Depends(verify_token),
                 services: Services = Depends(get_services)):
    if not body.contact_id or not body.content:
        raise HTTPException(status_code=400, detail="Missing required fields: contactId, content")
    entry = body.model_dump(exclude={"contact_id"}, exclude_none=True)
    memory_id = services.memory.store_memory(user_id, body.contact_id, entry)
    return {"success": True, "memoryId": memory_id}


@app.get("/api/memory/store")
def get_memory(contact_id: Optional[str] = Query(None, alias="contactId"),
               query: Optional[str] = None, context: Optional[str] = None,
               user_id: str = Depends(verify_token), services: Services = Depends(get_services)):
    if not contact_id:
        raise HTTPException(status_code=400, detail="Missing required field: contactId")
    if query:
        return {"success": True, "memories": services.memory.search_memories(user_id, contact_id, query)}
    if context:
        return {"success": True, "memories": services.memory.get_relevant_memories(user_id, contact_id, context)}
    return {"success": True, "memory": services.memory.get_memory(user_id, contact_id)}


@app.get("/api/memory/analyze")
def analyze_memory(contact_id: Optional[str] = Query(None, alias="contactId"),
                   type: str = "analysis", user_id: str = Depends(verify_token),
                   services: Services = Depends(get_services)):
    if not contact_id:
        raise HTTPException(status_code=400, detail="Missing required field: contactId")
    if type == "analysis":
        return {"success": True, "analysis": services.memory_analyzer.analyze_conversation(user_id, contact_id)}
    if type == "insights":
        return {"success": True, "insights": services.memory_analyzer.generate_insights(user_id, contact_id)}
    raise HTTPException(status_code=400, detail="Invalid analysis type")

# ------------------------
# Test data
# ------------------------

@app.delete("/api/test-data")
def reset_test_data(user_id: str = Depends(verify_token), services: Services = Depends(get_services)):
    deleted = {
        "contacts": services.contacts.delete_all(user_id),
        "messages": services.messages.delete_all(user_id),
        "reminders": services.reminders.clear_all_reminders(user_id),
        "contracts": services.contracts.delete_all(user_id),
        "memories": services.memory.delete_all(user_id),
    }
    logger.info(f"Wiped test data for {user_id}: {deleted}")
    return {"success": True, "deleted": deleted}
