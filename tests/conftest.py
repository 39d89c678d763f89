"""Shared fixtures: in-memory MongoDB, service instances and an ASGI test client."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from dataBase import get_db
from main import app
from services import ChatBroadcaster, ChatSessionManager, EntityLocks, NotificationStore, RequestLifecycle
from utils import create_access_token, utcnow

OWNER = "owner-1"
ALICE = "alice-1"
BOB = "bob-1"


@pytest.fixture
def mock_db():
    return AsyncMongoMockClient()["bookwise_test"]


@pytest.fixture
async def users(mock_db):
    for user_id, name in ((OWNER, "Olivia"), (ALICE, "Alice"), (BOB, "Bob")):
        await mock_db.users.insert_one({"_id": user_id, "name": name, "notifications": []})
    return {"owner": OWNER, "alice": ALICE, "bob": BOB}


@pytest.fixture
async def book_id(mock_db, users):
    now = utcnow()
    result = await mock_db.books.insert_one({
        "title": "The Left Hand of Darkness",
        "author": "Ursula K. Le Guin",
        "condition": "Good",
        "status": "Available",
        "owner_id": OWNER,
        "requests": [],
        "accepted_request": None,
        "donated_to": None,
        "created_at": now,
        "updated_at": now,
    })
    return str(result.inserted_id)


@pytest.fixture
def locks():
    return EntityLocks()


@pytest.fixture
def hub():
    return ChatBroadcaster()


@pytest.fixture
def store(mock_db, locks):
    return NotificationStore(mock_db, locks)


@pytest.fixture
def chats(mock_db, store, hub, locks):
    return ChatSessionManager(mock_db, store, hub, locks)


@pytest.fixture
def lifecycle(mock_db, chats, store, locks):
    return RequestLifecycle(mock_db, chats, store, locks)


@pytest.fixture
def auth_headers():
    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token({'user_id': user_id})}"}
    return _headers


@pytest.fixture
async def client(mock_db):
    """FastAPI client with the database dependency pointed at the mock."""
    app.dependency_overrides[get_db] = lambda: mock_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
