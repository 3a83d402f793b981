"""
Shared fixtures.

No test touches a real MongoDB server or the network: the document
backend runs against mongomock-motor, the file backend against tmp_path.
"""

from datetime import datetime

import pytest
from mongomock_motor import AsyncMongoMockClient

from finedge.access import DataAccess, create_app_components
from finedge.config import (
    AppSettings,
    LimitsSettings,
    MongoSettings,
    SecuritySettings,
    Settings,
    StorageSettings,
)
from finedge.services.storage import (
    DocumentRecordStore,
    FileRecordStore,
    JsonFileClient,
    MongoConnection,
)


TEST_SECRET = "unit-test-token-secret"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        app=AppSettings(environment="test", log_level="warning"),
        storage=StorageSettings(backend="file", data_dir=str(tmp_path / "data")),
        mongodb=MongoSettings(database="finedge_test", connect_attempts=1),
        security=SecuritySettings(token_secret=TEST_SECRET, bcrypt_rounds=4),
        limits=LimitsSettings(),
    )


@pytest.fixture
def file_store(tmp_path) -> FileRecordStore:
    return FileRecordStore(JsonFileClient(tmp_path / "data"))


class MockMotorClient:
    """
    In-memory motor client.
    
    Wraps AsyncMongoMockClient and answers the connection handshake
    (admin ping, close) the way a live server would.
    """
    
    def __init__(self):
        self._client = AsyncMongoMockClient()
        self.admin = self
        self.closed = False
    
    async def command(self, name):
        return {"ok": 1.0}
    
    def __getitem__(self, name):
        return self._client[name]
    
    def close(self):
        self.closed = True


@pytest.fixture
def mongo_connection() -> MongoConnection:
    client = MockMotorClient()
    return MongoConnection(
        MongoSettings(database="finedge_test", connect_attempts=1),
        client_factory=lambda _settings: client,
    )


@pytest.fixture
def mongo_store(mongo_connection) -> DocumentRecordStore:
    return DocumentRecordStore(mongo_connection)


@pytest.fixture(params=["file", "document-db"])
def store(request, file_store, mongo_store):
    """Run a test once per backend."""
    if request.param == "file":
        return file_store
    return mongo_store


@pytest.fixture
def access(settings, store) -> DataAccess:
    return create_app_components(settings, store=store)


@pytest.fixture
def file_access(settings, file_store) -> DataAccess:
    return create_app_components(settings, store=file_store)


def make_record(record_id: str, **fields) -> dict:
    """A stored record with fixed timestamps."""
    now = datetime(2024, 3, 1, 12, 0, 0)
    return {"id": record_id, "created_at": now, "updated_at": now, **fields}


def user_payload(email: str = "ana@example.com", **overrides) -> dict:
    payload = {
        "email": email,
        "password": "secret123",
        "first_name": "Ana",
        "last_name": "Silva",
    }
    payload.update(overrides)
    return payload


def transaction_payload(user_id: str, **overrides) -> dict:
    payload = {
        "user_id": user_id,
        "kind": "expense",
        "category": "Food",
        "amount": 25.0,
        "description": "Lunch",
        "date": datetime(2024, 3, 10, 12, 0, 0),
    }
    payload.update(overrides)
    return payload
