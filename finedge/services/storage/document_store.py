"""
MongoDB Storage Implementation

DESIGN DECISION: The document backend keeps the same record shape as the
flat-file backend. Our string id is stored as the document's _id, so ids
look identical whichever backend is configured.

The connection is an explicit handle (MongoConnection) built once at
startup and injected into the store. There is no module-level client.

TRADEOFFS:
- Needs a running server, but filtering, counting and aggregation run
  server-side with indexes
- Datetimes are stored at millisecond precision
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import pymongo.errors as mongo_errors
import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finedge.config.settings import MongoSettings
from finedge.models.base import storage_now
from finedge.services.storage.interface import (
    DEFAULT_SORT,
    DuplicateKeyError,
    FindResult,
    RecordStoreInterface,
    SortSpec,
    StorageUnavailableError,
    record_not_found,
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[MongoSettings], Any]


def default_client_factory(settings: MongoSettings) -> AsyncIOMotorClient:
    """Motor client with bounded timeouts so callers fail fast."""
    return AsyncIOMotorClient(
        settings.uri,
        serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        connectTimeoutMS=settings.connect_timeout_ms,
        socketTimeoutMS=settings.socket_timeout_ms,
    )


class MongoConnection:
    """
    Process-wide MongoDB handle.
    
    - connect() is lazy and idempotent; a failed attempt leaves nothing
      half-built, so it can simply be called again
    - close() releases the client; later operations fail with
      StorageUnavailableError until connect() is called again
    """
    
    def __init__(
        self,
        settings: MongoSettings,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._settings = settings
        self._client_factory = client_factory or default_client_factory
        self._client: Optional[Any] = None
        self._database: Optional[AsyncIOMotorDatabase] = None
        self._closed = False
        self._lock = asyncio.Lock()
    
    @property
    def is_connected(self) -> bool:
        return self._database is not None
    
    async def connect(self) -> AsyncIOMotorDatabase:
        """Connect (or return the existing handle)."""
        async with self._lock:
            if self._database is not None:
                return self._database
            
            logger.info("mongodb_connecting", target=self._settings.redacted_uri)
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                retry=retry_if_exception_type(StorageUnavailableError),
                reraise=True,
            ):
                with attempt:
                    client, database = await self._open()
            
            self._client = client
            self._database = database
            self._closed = False
            logger.info("mongodb_connected", database=self._settings.database)
            return database
    
    async def _open(self) -> tuple[Any, AsyncIOMotorDatabase]:
        client = None
        try:
            client = self._client_factory(self._settings)
            await client.admin.command("ping")
            database = client[self._settings.database]
            await self._ensure_indexes(database)
        except mongo_errors.PyMongoError as e:
            if client is not None:
                client.close()
            logger.warning("mongodb_connect_failed", error=str(e))
            raise StorageUnavailableError(
                f"Failed to connect to MongoDB at {self._settings.redacted_uri}"
            ) from e
        return client, database
    
    async def _ensure_indexes(self, database: AsyncIOMotorDatabase) -> None:
        await database["users"].create_index([("email", ASCENDING)], unique=True)
        transactions = database["transactions"]
        await transactions.create_index([("user_id", ASCENDING), ("date", DESCENDING)])
        await transactions.create_index([("user_id", ASCENDING), ("kind", ASCENDING)])
        await transactions.create_index([("user_id", ASCENDING), ("category", ASCENDING)])
    
    async def database(self) -> AsyncIOMotorDatabase:
        """The live database handle, connecting lazily on first use."""
        if self._closed:
            raise StorageUnavailableError("MongoDB connection has been closed")
        if self._database is None:
            return await self.connect()
        return self._database
    
    async def client(self) -> Any:
        await self.database()
        return self._client
    
    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                self._client.close()
                logger.info("mongodb_disconnected")
            self._client = None
            self._database = None
            self._closed = True


def _to_mongo_field(name: str) -> str:
    return "_id" if name == "id" else name


def _to_mongo_query(query: Any) -> Any:
    """Rename id to _id throughout a query document."""
    if isinstance(query, dict):
        return {_to_mongo_field(key): _to_mongo_query(value) for key, value in query.items()}
    if isinstance(query, list):
        return [_to_mongo_query(item) for item in query]
    return query


def _to_document(record: dict) -> dict:
    document = dict(record)
    document["_id"] = document.pop("id")
    return document


def _from_document(document: dict) -> dict:
    record = dict(document)
    if "_id" in record:
        record["id"] = record.pop("_id")
    return record


def _duplicate_field(error: mongo_errors.DuplicateKeyError, unique_fields: Sequence[str]) -> str:
    """Best effort at naming the field a duplicate-key error is about."""
    details = error.details or {}
    key_value = details.get("keyValue") or {}
    if key_value:
        field = next(iter(key_value))
    else:
        found = re.search(r"index: (\w+?)_-?1", str(error))
        if found:
            field = found.group(1)
        else:
            field = unique_fields[0] if unique_fields else "_id"
    return "id" if field == "_id" else field


class DocumentRecordStore(RecordStoreInterface):
    """
    MongoDB implementation of the record store.
    
    A store created by with_transaction carries a session; every
    operation it performs joins that session's transaction.
    """
    
    def __init__(self, connection: MongoConnection, session: Optional[Any] = None):
        self._connection = connection
        self._session = session
    
    @property
    def connection(self) -> MongoConnection:
        return self._connection
    
    def _session_kwargs(self) -> dict:
        return {"session": self._session} if self._session is not None else {}
    
    async def _collection(self, name: str):
        database = await self._connection.database()
        return database[name]
    
    async def connect(self) -> None:
        await self._connection.connect()
    
    async def close(self) -> None:
        await self._connection.close()
    
    async def create(
        self,
        collection: str,
        document: dict,
        unique_fields: Sequence[str] = (),
    ) -> dict:
        coll = await self._collection(collection)
        try:
            await coll.insert_one(_to_document(document), **self._session_kwargs())
        except mongo_errors.DuplicateKeyError as e:
            field = _duplicate_field(e, unique_fields)
            raise DuplicateKeyError(field, document.get(field)) from e
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to create {collection} document") from e
        return dict(document)
    
    async def find_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        return await self.find_one(collection, {"id": record_id})
    
    async def find_one(self, collection: str, query: dict) -> Optional[dict]:
        coll = await self._collection(collection)
        try:
            document = await coll.find_one(_to_mongo_query(query), **self._session_kwargs())
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to find {collection} document") from e
        return _from_document(document) if document is not None else None
    
    async def find(
        self,
        collection: str,
        query: Optional[dict] = None,
        skip: int = 0,
        limit: int = 10,
        sort: Optional[SortSpec] = None,
        projection: Optional[dict] = None,
    ) -> FindResult:
        coll = await self._collection(collection)
        mongo_query = _to_mongo_query(query or {})
        mongo_sort = [(_to_mongo_field(name), direction) for name, direction in (sort or DEFAULT_SORT)]
        mongo_projection = _to_mongo_query(projection) if projection else None
        try:
            total = await coll.count_documents(mongo_query, **self._session_kwargs())
            cursor = coll.find(
                mongo_query,
                mongo_projection,
                sort=mongo_sort,
                skip=skip,
                limit=limit,
                **self._session_kwargs(),
            )
            documents = await cursor.to_list(length=limit)
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to find {collection} documents") from e
        return FindResult(
            data=[_from_document(document) for document in documents],
            total=total,
            skip=skip,
            limit=limit,
        )
    
    async def count(self, collection: str, query: Optional[dict] = None) -> int:
        coll = await self._collection(collection)
        try:
            return await coll.count_documents(_to_mongo_query(query or {}), **self._session_kwargs())
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to count {collection} documents") from e
    
    async def update(self, collection: str, record_id: str, changes: dict) -> dict:
        coll = await self._collection(collection)
        fields = {key: value for key, value in changes.items() if key != "id"}
        if "updated_at" not in fields:
            fields["updated_at"] = storage_now()
        try:
            document = await coll.find_one_and_update(
                {"_id": record_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
                **self._session_kwargs(),
            )
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to update {collection} document") from e
        if document is None:
            raise record_not_found(collection, record_id)
        return _from_document(document)
    
    async def delete(self, collection: str, record_id: str) -> None:
        coll = await self._collection(collection)
        try:
            result = await coll.delete_one({"_id": record_id}, **self._session_kwargs())
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to delete {collection} document") from e
        if result.deleted_count == 0:
            raise record_not_found(collection, record_id)
    
    async def delete_many(self, collection: str, query: dict) -> int:
        coll = await self._collection(collection)
        try:
            result = await coll.delete_many(_to_mongo_query(query), **self._session_kwargs())
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to delete {collection} documents") from e
        return result.deleted_count
    
    async def aggregate(self, collection: str, pipeline: Sequence[dict]) -> list[dict]:
        coll = await self._collection(collection)
        stages = [
            {"$match": _to_mongo_query(stage["$match"])} if "$match" in stage else stage
            for stage in pipeline
        ]
        try:
            cursor = coll.aggregate(stages, **self._session_kwargs())
            return await cursor.to_list(length=None)
        except mongo_errors.PyMongoError as e:
            raise StorageUnavailableError(f"Failed to aggregate {collection}") from e
    
    async def with_transaction(
        self,
        body: Callable[[RecordStoreInterface], Awaitable[T]],
    ) -> T:
        """Run body inside a client session transaction."""
        if self._session is not None:
            # Already inside a transaction; join it
            return await body(self)
        
        client = await self._connection.client()
        try:
            async with await client.start_session() as session:
                async with session.start_transaction():
                    return await body(DocumentRecordStore(self._connection, session=session))
        except mongo_errors.PyMongoError as e:
            logger.error("mongodb_transaction_failed", error=str(e))
            raise StorageUnavailableError("Transaction failed") from e
