# pingchain/contracts.py
import calendar
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from pymongo import ASCENDING

from .models import CommunicationContract, utcnow
from .utils import strip_mongo_id

FREQUENCY_DAYS = {"daily": 1, "weekly": 7, "biweekly": 14}
FREQUENCY_MONTHS = {"monthly": 1, "quarterly": 3, "yearly": 12}


def add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def calculate_next_checkin(from_date: datetime, frequency: str, time_of_day: str = "09:00") -> datetime:
    if frequency in FREQUENCY_DAYS:
        next_date = from_date + timedelta(days=FREQUENCY_DAYS[frequency])
    elif frequency in FREQUENCY_MONTHS:
        next_date = add_months(from_date, FREQUENCY_MONTHS[frequency])
    else:
        raise ValueError(f"Unknown contract frequency: {frequency}")

    hours, minutes = (int(part) for part in time_of_day.split(":"))
    return next_date.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def due_contracts(contracts: List[CommunicationContract], now: Optional[datetime] = None) -> List[CommunicationContract]:
    now = now or utcnow()
    return [c for c in contracts if c.status == "active" and c.next_checkin <= now]


class ContractStore:

    def __init__(self, db):
        self.collection = db["contracts"]

    def ensure_indexes(self):
        self.collection.create_index([("user_id", ASCENDING), ("status", ASCENDING)])

    def create(self, user_id: str, contact_id: str, contact_name: str, frequency: str,
               time_of_day: str = "09:00", days_of_week: Optional[List[int]] = None,
               now: Optional[datetime] = None) -> CommunicationContract:
        now = now or utcnow()
        contract = CommunicationContract(
            id=f"contract_{uuid.uuid4().hex}",
            user_id=user_id,
            contact_id=contact_id,
            contact_name=contact_name,
            frequency=frequency,
            time_of_day=time_of_day,
            days_of_week=days_of_week if days_of_week is not None else [1, 2, 3, 4, 5],
            last_checkin=now,
            next_checkin=calculate_next_checkin(now, frequency, time_of_day),
        )
        doc = contract.model_dump()
        doc["_id"] = doc.pop("id")
        self.collection.insert_one(doc)
        return contract

    def list(self, user_id: str, status: Optional[str] = None) -> List[CommunicationContract]:
        query = {"user_id": user_id}
        if status:
            query["status"] = status
        return [CommunicationContract(**strip_mongo_id(d)) for d in self.collection.find(query)]

    def advance(self, contract: CommunicationContract, now: Optional[datetime] = None) -> CommunicationContract:
        """Rolls the contract forward after a check-in has been issued."""
        now = now or utcnow()
        contract.last_checkin = now
        contract.next_checkin = calculate_next_checkin(now, contract.frequency, contract.time_of_day)
        self.collection.update_one(
            {"_id": contract.id, "user_id": contract.user_id},
            {"$set": {"last_checkin": contract.last_checkin, "next_checkin": contract.next_checkin}},
        )
        return contract

    def delete_all(self, user_id: str) -> int:
        return self.collection.delete_many({"user_id": user_id}).deleted_count
