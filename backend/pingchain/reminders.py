# pingchain/reminders.py
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import APP_URL
from .contracts import due_contracts
from .models import ReminderNotification, OpenLoop, utcnow
from .utils import hours_since, strip_mongo_id, HOUR

logger = logging.getLogger(__name__)

# ----------------------------------
# Thresholds
# ----------------------------------

OVERDUE_AFTER_HOURS = 24
DEFAULT_SCHEDULE_DELAY = timedelta(hours=1)


class ReminderStateError(ValueError):
    """Raised when a transition is requested from a non-pending reminder."""


def make_reminder_id(contact_id: str, reminder_type: str, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"reminder_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}_{contact_id}_{reminder_type}"


def overdue_priority(hours_since_last_message: float) -> str:
    if hours_since_last_message >= 72:
        return "high"
    if hours_since_last_message >= 48:
        return "medium"
    return "low"

# ----------------------------------
# Persistence
# ----------------------------------

class ReminderStore:
    """
    `reminders` collection keyed by the generated reminder id.

    A partial unique index on (user_id, contact_id, type) over pending
    documents backs the one-pending-reminder rule, so `insert_if_absent`
    holds under concurrent writers.
    """

    def __init__(self, db):
        self.collection = db["reminders"]

    def ensure_indexes(self):
        self.collection.create_index(
            [("user_id", ASCENDING), ("contact_id", ASCENDING), ("type", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": "pending"},
            name="one_pending_per_contact_type",
        )
        self.collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    @staticmethod
    def _pending_filter(reminder: ReminderNotification) -> dict:
        return {
            "user_id": reminder.user_id,
            "contact_id": reminder.contact_id,
            "type": reminder.type,
            "status": "pending",
        }

    def _upsert(self, query: dict, doc: dict) -> dict:
        return self.collection.find_one_and_update(
            query,
            {"$setOnInsert": doc},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def insert_if_absent(self, reminder: ReminderNotification) -> ReminderNotification:
        """Returns the pending reminder for (contact, type): the new one, or the one already stored."""
        query = self._pending_filter(reminder)
        doc = reminder.model_dump(exclude={"id", "persisted", *query.keys()})
        doc["_id"] = reminder.id
        try:
            stored = self._upsert(query, doc)
        except DuplicateKeyError:
            # lost the upsert race, the winner's document is there now
            stored = self.collection.find_one(query)
            if stored is None:
                # the winner already left pending, so the slot is free again
                stored = self._upsert(query, doc)
        return ReminderNotification(**strip_mongo_id(stored))

    def list(self, user_id: str, status: Optional[str] = None) -> List[ReminderNotification]:
        query = {"user_id": user_id}
        if status:
            query["status"] = status
        cursor = self.collection.find(query).sort("created_at", -1)
        return [ReminderNotification(**strip_mongo_id(d)) for d in cursor]

    def get(self, user_id: str, reminder_id: str) -> Optional[ReminderNotification]:
        doc = self.collection.find_one({"_id": reminder_id, "user_id": user_id})
        return ReminderNotification(**strip_mongo_id(doc)) if doc else None

    def update(self, user_id: str, reminder_id: str, fields: dict) -> bool:
        result = self.collection.update_one({"_id": reminder_id, "user_id": user_id}, {"$set": fields})
        return result.matched_count == 1

    def delete(self, user_id: str, reminder_id: str) -> bool:
        return self.collection.delete_one({"_id": reminder_id, "user_id": user_id}).deleted_count == 1

    def delete_all(self, user_id: str) -> int:
        return self.collection.delete_many({"user_id": user_id}).deleted_count

# ----------------------------------
# Scheduler
# ----------------------------------

class ReminderScheduler:
    """
    Creates and mutates reminders for a user. Built once by the app and
    shared across requests; the only state it holds is the local-only copy
    of reminders whose write to the store failed.
    """

    def __init__(self, store: ReminderStore):
        self.store = store
        self._local: Dict[str, ReminderNotification] = {}

    def _local_pending(self, user_id: str, contact_id: str, reminder_type: str) -> Optional[ReminderNotification]:
        for reminder in self._local.values():
            if (reminder.user_id == user_id and reminder.contact_id == contact_id
                    and reminder.type == reminder_type and reminder.status == "pending"):
                return reminder
        return None

    def create_reminder(self, user_id: str, contact_id: str, contact_name: str, message: str,
                        type: str = "overdue", priority: str = "medium",
                        scheduled_for: Optional[datetime] = None,
                        now: Optional[datetime] = None) -> str:
        now = now or utcnow()

        existing = self._local_pending(user_id, contact_id, type)
        if existing:
            logger.info(f"Reminder already exists for {contact_name} ({type})")
            return existing.id

        if type == "scheduled" and (scheduled_for is None or scheduled_for <= now):
            scheduled_for = now + DEFAULT_SCHEDULE_DELAY

        reminder = ReminderNotification(
            id=make_reminder_id(contact_id, type, now),
            user_id=user_id,
            contact_id=contact_id,
            contact_name=contact_name,
            message=message,
            type=type,
            priority=priority,
            created_at=now,
            scheduled_for=scheduled_for,
            status="pending",
        )

        try:
            stored = self.store.insert_if_absent(reminder)
        except PyMongoError as e:
            logger.error(f"Error creating reminder, keeping local copy {reminder.id}: {e}")
            reminder.persisted = False
            self._local[reminder.id] = reminder
            return reminder.id

        if stored.id != reminder.id:
            logger.info(f"Reminder already exists for {contact_name} ({type})")
        return stored.id

    def list_reminders(self, user_id: str, status: Optional[str] = None) -> List[ReminderNotification]:
        try:
            stored = self.store.list(user_id, status)
        except PyMongoError as e:
            logger.error(f"Error fetching reminders: {e}")
            stored = []
        local = [r for r in self._local.values()
                 if r.user_id == user_id and (status is None or r.status == status)]
        return sorted(stored + local, key=lambda r: r.created_at, reverse=True)

    def get_reminder(self, user_id: str, reminder_id: str) -> Optional[ReminderNotification]:
        local = self._local.get(reminder_id)
        if local and local.user_id == user_id:
            return local
        return self.store.get(user_id, reminder_id)

    def update_reminder(self, user_id: str, reminder_id: str, fields: dict) -> bool:
        local = self._local.get(reminder_id)
        if local and local.user_id == user_id:
            self._local[reminder_id] = local.model_copy(update=fields)
            return True
        return self.store.update(user_id, reminder_id, fields)

    def delete_reminder(self, user_id: str, reminder_id: str) -> bool:
        local = self._local.get(reminder_id)
        if local and local.user_id == user_id:
            del self._local[reminder_id]
            return True
        return self.store.delete(user_id, reminder_id)

    def clear_all_reminders(self, user_id: str) -> int:
        for reminder_id in [k for k, r in self._local.items() if r.user_id == user_id]:
            del self._local[reminder_id]
        return self.store.delete_all(user_id)

    # ------------------------
    # Transitions
    # ------------------------

    def _transition(self, user_id: str, reminder_id: str, fields: dict) -> Optional[ReminderNotification]:
        reminder = self.get_reminder(user_id, reminder_id)
        if reminder is None:
            return None
        if reminder.status != "pending":
            raise ReminderStateError(f"Reminder {reminder_id} is {reminder.status}, not pending")
        self.update_reminder(user_id, reminder_id, fields)
        return reminder.model_copy(update=fields)

    def respond(self, user_id: str, reminder_id: str, now: Optional[datetime] = None):
        now = now or utcnow()
        return self._transition(user_id, reminder_id, {"status": "sent", "sent_at": now, "responded_at": now})

    def mark_sent(self, user_id: str, reminder_id: str, now: Optional[datetime] = None):
        return self._transition(user_id, reminder_id, {"status": "sent", "sent_at": now or utcnow()})

    def dismiss(self, user_id: str, reminder_id: str):
        return self._transition(user_id, reminder_id, {"status": "dismissed"})

    def snooze(self, user_id: str, reminder_id: str, hours: float = 1.0, now: Optional[datetime] = None):
        now = now or utcnow()
        return self._transition(user_id, reminder_id, {"scheduled_for": now + timedelta(hours=hours)})

    # ------------------------
    # Convenience constructors
    # ------------------------

    def create_overdue_reminder(self, user_id: str, contact_id: str, contact_name: str,
                                last_message: str, hours_since_last_message: int,
                                now: Optional[datetime] = None) -> str:
        message = (f"You haven't responded to {contact_name} in {hours_since_last_message} hours. "
                   f'Last message: "{last_message}"')
        priority = overdue_priority(hours_since_last_message)
        return self.create_reminder(user_id, contact_id, contact_name, message, "overdue", priority, now=now)

    def create_question_reminder(self, user_id: str, contact_id: str, contact_name: str,
                                 question: str, now: Optional[datetime] = None) -> str:
        message = f'{contact_name} asked: "{question}" - You haven\'t responded yet.'
        return self.create_reminder(user_id, contact_id, contact_name, message, "question", "high", now=now)

    def create_scheduled_reminder(self, user_id: str, contact_id: str, contact_name: str,
                                  scheduled_for: Optional[datetime], message: Optional[str] = None,
                                  now: Optional[datetime] = None) -> str:
        message = message or f"Scheduled check-in with {contact_name}"
        return self.create_reminder(user_id, contact_id, contact_name, message, "scheduled", "medium",
                                    scheduled_for, now=now)

# ----------------------------------
# Overdue detection & dispatch
# ----------------------------------

def check_for_overdue_conversations(open_loops: List[OpenLoop], now: Optional[datetime] = None) -> List[dict]:
    now = now or utcnow()
    overdue = []
    for loop in open_loops:
        if not loop.contact_id:
            logger.warning(f"Skipping open loop {loop.id} without a contact")
            continue
        hours = hours_since(loop.created_at, now)
        if hours < OVERDUE_AFTER_HOURS:
            continue
        overdue.append({
            "loop_id": loop.id,
            "contact_id": loop.contact_id,
            "contact_name": loop.contact_name or "Contact",
            "question": loop.question,
            "hours": int(hours),
            "priority": overdue_priority(hours),
        })
    return overdue


def render_reminder_email(reminder: ReminderNotification) -> Dict[str, str]:
    return {
        "subject": f"Loop Reminder: {reminder.contact_name}",
        "text": (
            f"Loop Reminder\n\nYou have an important conversation with {reminder.contact_name} "
            f"that needs attention:\n\n{reminder.message}\n\n"
            f"Open your Loop Dashboard to respond: {APP_URL}/dashboard"
        ),
    }


def dispatch_reminder(reminder: ReminderNotification) -> bool:
    # Delivery providers live outside this service; the rendered email is logged.
    email = render_reminder_email(reminder)
    logger.info(f"Dispatching reminder {reminder.id} ({reminder.priority}): {email['subject']}")
    logger.debug(email["text"])
    return True


def is_due(reminder: ReminderNotification, now: datetime) -> bool:
    return reminder.status == "pending" and (reminder.scheduled_for is None or reminder.scheduled_for <= now)


def process_reminders(scheduler: ReminderScheduler, user_id: str, open_loops: List[OpenLoop],
                      contract_store=None, now: Optional[datetime] = None) -> dict:
    """
    One processing pass for a user: overdue loops and due contracts become
    reminders, then every due pending reminder is dispatched and marked sent.
    """
    now = now or utcnow()
    # ids already stored; dedup hands these back instead of a new record
    known = {r.id for r in scheduler.list_reminders(user_id)}
    created = set()

    for item in check_for_overdue_conversations(open_loops, now):
        created.add(scheduler.create_overdue_reminder(
            user_id, item["contact_id"], item["contact_name"], item["question"], item["hours"], now=now,
        ))

    if contract_store is not None:
        for contract in due_contracts(contract_store.list(user_id, status="active"), now):
            created.add(scheduler.create_reminder(
                user_id, contract.contact_id, contract.contact_name,
                f"Scheduled check-in with {contract.contact_name} ({contract.frequency})",
                "scheduled", "medium", now=now,
            ))
            contract_store.advance(contract, now)

    created -= known

    sent = 0
    for reminder in scheduler.list_reminders(user_id, status="pending"):
        if not is_due(reminder, now):
            continue
        if dispatch_reminder(reminder):
            scheduler.mark_sent(user_id, reminder.id, now)
            sent += 1

    logger.info(f"Processed {len(open_loops)} open loops for {user_id}: {len(created)} reminders, {sent} sent")
    return {"created": len(created), "sent": sent}

# ----------------------------------
# Effectiveness
# ----------------------------------

def effectiveness_stats(reminders: List[ReminderNotification]) -> dict:
    responded = [r for r in reminders if r.responded_at is not None]
    times = [(r.responded_at - r.created_at).total_seconds() / HOUR for r in responded]
    total = len(reminders)
    return {
        "responseRate": (len(responded) / total) * 100 if total else 0,
        "avgResponseTime": sum(times) / len(times) if times else 0,
        "totalReminders": total,
    }
