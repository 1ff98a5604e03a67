import copy
import os
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

# Add the 'backend' directory to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from pingchain.auth import verify_token
from pingchain.main import app, build_services, get_services
from pingchain.models import Message

TEST_USER = "user_test_1"
NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


# ------------------------
# In-memory MongoDB stand-in
# ------------------------

def _matches(doc, query):
    for key, expected in query.items():
        value = doc.get(key)
        if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
            if value is None:
                return False
            if "$gte" in expected and not value >= expected["$gte"]:
                return False
            if "$lte" in expected and not value <= expected["$lte"]:
                return False
        elif value != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction=1):
        self.docs.sort(key=lambda d: d.get(key), reverse=direction == -1)
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    def __iter__(self):
        return iter(copy.deepcopy(self.docs))


class FakeCollection:
    """Just enough of pymongo's Collection for the stores."""

    def __init__(self):
        self.docs = []

    def create_index(self, *args, **kwargs):
        return "index"

    def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    def find(self, query=None):
        return FakeCursor([d for d in self.docs if _matches(d, query or {})])

    def find_one(self, query):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find_one_and_update(self, query, update, upsert=False, return_document=None):
        existing = self.find_one(query)
        if existing is not None:
            return existing
        if not upsert:
            return None
        doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
        doc.update(update.get("$setOnInsert", {}))
        self.insert_one(doc)
        return copy.deepcopy(doc)

    def update_one(self, query, update):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1)
        return SimpleNamespace(matched_count=0)

    def delete_one(self, query):
        for doc in self.docs:
            if _matches(doc, query):
                self.docs.remove(doc)
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def delete_many(self, query):
        keep = [d for d in self.docs if not _matches(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)


class FakeDatabase(dict):
    def __missing__(self, name):
        self[name] = FakeCollection()
        return self[name]


# ------------------------
# Fixtures
# ------------------------

@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def services(fake_db):
    return build_services(fake_db)


@pytest.fixture(autouse=True)
def mock_external_services(mocker):
    """
    Mocks the hosted model call (requests.post) and the transformer/KeyBERT
    helpers used when memories are stored, so no test touches the network
    or loads a model.
    """
    mock_hf_response = mocker.Mock()
    mock_hf_response.status_code = 200
    mock_hf_response.raise_for_status.return_value = None
    mock_hf_response.json.return_value = [{"generated_text": "Sounds great, talk soon!"}]
    mocker.patch('requests.post', return_value=mock_hf_response)

    mocker.patch('pingchain.memory.extract_topic_tags', return_value=["project"])
    mocker.patch('pingchain.memory.detect_emotion', return_value="joy")


@pytest.fixture
def client(services):
    """
    TestClient with auth resolved to TEST_USER and the services wired to the
    in-memory database.
    """
    app.dependency_overrides[verify_token] = lambda: TEST_USER
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_message():
    """Builds a Message `hours_ago` hours before NOW."""
    counter = {"n": 0}

    def _make(content, hours_ago=0.0, direction="outbound", contact_id="c1", contact_name="Alex"):
        counter["n"] += 1
        return Message(
            id=f"m{counter['n']}",
            contact_id=contact_id,
            user_id=TEST_USER,
            content=content,
            created_at=NOW - timedelta(hours=hours_ago),
            direction=direction,
            contact_name=contact_name,
        )
    return _make
