"""
Flat-File Storage Implementation

DESIGN DECISION: Each collection is one human-readable JSON array on disk
(users.json, transactions.json, ...), in creation order, with no index
files beside it.

TRADEOFFS:
- Every operation reads the whole file (fine for personal-scale data)
- Every mutation is a full read-modify-write cycle
- Queries and aggregations run in Python (finedge.queries.engine)

CONCURRENCY: A naive read-then-write loses updates when two requests
interleave. All mutations of a collection therefore run under that
collection's asyncio.Lock, and files are replaced atomically (temp file +
os.replace), so a reader sees either the old or the new file, never half
of one.
"""

import asyncio
import json
import os
import tempfile
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from finedge.models.base import storage_now
from finedge.queries.engine import (
    RecordPredicate,
    filter_records,
    matches,
    paginate,
    project,
    run_pipeline,
    sort_records,
)
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

# Fields stored as ISO strings and revived as datetimes on read
DATETIME_FIELDS = ("created_at", "updated_at", "date", "last_login", "timestamp")


def _encode(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def _replace_file(path: Path, text: str) -> None:
    """Write text beside path, then swap it in; the temp file never outlives a failure."""
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def _decode(record: dict) -> dict:
    for name in DATETIME_FIELDS:
        value = record.get(name)
        if isinstance(value, str) and value:
            record[name] = datetime.fromisoformat(value)
    return record


class JsonFileClient:
    """
    Low-level JSON container client.
    
    Owns the on-disk layout, the per-collection write locks and the
    open/closed lifecycle. Higher-level query semantics live in
    FileRecordStore.
    """
    
    def __init__(
        self,
        data_dir: str | Path,
        paths: Optional[dict[str, Path]] = None,
    ):
        self._data_dir = Path(data_dir)
        self._paths = dict(paths or {})
        self._locks: dict[str, asyncio.Lock] = {}
        self._connected = False
        self._closed = False
    
    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    
    async def connect(self) -> None:
        """Ensure the data directory exists. Idempotent."""
        if self._connected:
            return
        try:
            await asyncio.to_thread(self._ensure_dirs)
        except OSError as e:
            raise StorageUnavailableError(
                f"Failed to create data directory: {self._data_dir}"
            ) from e
        self._connected = True
        self._closed = False
        logger.info("file_store_connected", data_dir=str(self._data_dir))
    
    async def close(self) -> None:
        self._connected = False
        self._closed = True
        logger.info("file_store_closed", data_dir=str(self._data_dir))
    
    async def _ready(self) -> None:
        """Lazily connect on first use; refuse to operate after close()."""
        if self._closed:
            raise StorageUnavailableError("File store has been closed")
        if not self._connected:
            await self.connect()
    
    def _ensure_dirs(self) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        for path in self._paths.values():
            path.parent.mkdir(parents=True, exist_ok=True)
    
    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------
    
    def path_for(self, collection: str) -> Path:
        """Container file for a collection."""
        return self._paths.get(collection, self._data_dir / f"{collection}.json")
    
    def lock_for(self, collection: str) -> asyncio.Lock:
        """The single write lock serializing mutations of a collection."""
        if collection not in self._locks:
            self._locks[collection] = asyncio.Lock()
        return self._locks[collection]
    
    def known_collections(self) -> list[str]:
        """Collections with a container file on disk or an explicit path."""
        names = set(self._paths)
        if self._data_dir.is_dir():
            names.update(path.stem for path in self._data_dir.glob("*.json"))
        return sorted(names)
    
    # ------------------------------------------------------------------
    # Raw file access (blocking, run in a worker thread)
    # ------------------------------------------------------------------
    
    def _read_file(self, path: Path) -> list[dict]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        if not text.strip():
            return []
        data = json.loads(text)
        if not isinstance(data, list):
            raise ValueError(f"{path} does not hold a JSON array")
        return [_decode(record) for record in data]
    
    def _write_file(self, path: Path, records: list[dict]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        _replace_file(path, json.dumps(records, indent=2, default=_encode, ensure_ascii=False))
    
    async def _read_unlocked(self, collection: str) -> list[dict]:
        path = self.path_for(collection)
        try:
            return await asyncio.to_thread(self._read_file, path)
        except (OSError, ValueError) as e:
            logger.error("file_read_failed", path=str(path), error=str(e))
            raise StorageUnavailableError(f"Failed to read file: {path}") from e
    
    async def _write_unlocked(self, collection: str, records: list[dict]) -> None:
        path = self.path_for(collection)
        try:
            await asyncio.to_thread(self._write_file, path, records)
        except (OSError, TypeError, ValueError) as e:
            logger.error("file_write_failed", path=str(path), error=str(e))
            raise StorageUnavailableError(f"Failed to write file: {path}") from e
    
    # ------------------------------------------------------------------
    # Collection operations
    # ------------------------------------------------------------------
    
    async def read(self, collection: str) -> list[dict]:
        """Every record of a collection; empty when the file does not exist yet."""
        await self._ready()
        return await self._read_unlocked(collection)
    
    async def write(self, collection: str, records: list[dict]) -> None:
        """Replace the whole collection."""
        await self._ready()
        async with self.lock_for(collection):
            await self._write_unlocked(collection, records)
    
    async def append(
        self,
        collection: str,
        record: dict,
        unique_fields: Sequence[str] = (),
    ) -> dict:
        """
        Append one record.
        
        Uniqueness is checked inside the write lock, so two concurrent
        appends of the same unique value cannot both succeed.
        """
        await self._ready()
        async with self.lock_for(collection):
            records = await self._read_unlocked(collection)
            for name in ("id", *unique_fields):
                value = record.get(name)
                if value is None:
                    continue
                if any(existing.get(name) == value for existing in records):
                    raise DuplicateKeyError(name, value)
            records.append(record)
            await self._write_unlocked(collection, records)
        return dict(record)
    
    async def update_by_id(self, collection: str, record_id: str, partial: dict) -> dict:
        """Merge partial over the stored record and refresh updated_at."""
        await self._ready()
        async with self.lock_for(collection):
            records = await self._read_unlocked(collection)
            for index, existing in enumerate(records):
                if existing.get("id") == record_id:
                    changes = {k: v for k, v in partial.items() if k != "id"}
                    changes.setdefault("updated_at", storage_now())
                    records[index] = {**existing, **changes}
                    await self._write_unlocked(collection, records)
                    return dict(records[index])
        raise record_not_found(collection, record_id)
    
    async def delete_by_id(self, collection: str, record_id: str) -> None:
        await self._ready()
        async with self.lock_for(collection):
            records = await self._read_unlocked(collection)
            remaining = [r for r in records if r.get("id") != record_id]
            if len(remaining) == len(records):
                raise record_not_found(collection, record_id)
            await self._write_unlocked(collection, remaining)
    
    async def delete_where(self, collection: str, predicate: RecordPredicate) -> int:
        await self._ready()
        async with self.lock_for(collection):
            records = await self._read_unlocked(collection)
            remaining = [r for r in records if not predicate(r)]
            removed = len(records) - len(remaining)
            if removed:
                await self._write_unlocked(collection, remaining)
            return removed
    
    async def find_where(self, collection: str, predicate: RecordPredicate) -> list[dict]:
        """Linear scan, order-preserving."""
        return [record for record in await self.read(collection) if predicate(record)]
    
    async def find_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        for record in await self.read(collection):
            if record.get("id") == record_id:
                return record
        return None
    
    async def clear(self, collection: str) -> None:
        await self.write(collection, [])
    
    # ------------------------------------------------------------------
    # Snapshots (used by FileRecordStore.with_transaction)
    # ------------------------------------------------------------------
    
    async def snapshot(self) -> dict[str, Optional[str]]:
        """Raw contents of every known collection file (None if absent)."""
        await self._ready()
        
        def _capture() -> dict[str, Optional[str]]:
            captured = {}
            for name in self.known_collections():
                path = self.path_for(name)
                captured[name] = path.read_text(encoding="utf-8") if path.exists() else None
            return captured
        
        try:
            return await asyncio.to_thread(_capture)
        except OSError as e:
            raise StorageUnavailableError("Failed to snapshot collections") from e
    
    async def restore(self, captured: dict[str, Optional[str]]) -> None:
        """Put every collection back to a snapshot, dropping files created since."""
        def _restore(name: str, text: Optional[str]) -> None:
            path = self.path_for(name)
            if text is None:
                if path.exists():
                    path.unlink()
                return
            _replace_file(path, text)
        
        names = set(captured) | set(self.known_collections())
        for name in sorted(names):
            async with self.lock_for(name):
                try:
                    await asyncio.to_thread(_restore, name, captured.get(name))
                except OSError as e:
                    raise StorageUnavailableError(
                        f"Failed to restore collection: {name}"
                    ) from e


class FileRecordStore(RecordStoreInterface):
    """
    Flat-file implementation of the record store.
    
    Queries, sorting and aggregation pipelines are evaluated in process
    by finedge.queries.engine.
    """
    
    def __init__(self, client: JsonFileClient):
        self._client = client
        self._transaction_lock = asyncio.Lock()
    
    @property
    def client(self) -> JsonFileClient:
        return self._client
    
    async def connect(self) -> None:
        await self._client.connect()
    
    async def close(self) -> None:
        await self._client.close()
    
    async def create(
        self,
        collection: str,
        document: dict,
        unique_fields: Sequence[str] = (),
    ) -> dict:
        return await self._client.append(collection, dict(document), unique_fields)
    
    async def find_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        return await self._client.find_by_id(collection, record_id)
    
    async def find_one(self, collection: str, query: dict) -> Optional[dict]:
        for record in await self._client.read(collection):
            if matches(record, query):
                return record
        return None
    
    async def find(
        self,
        collection: str,
        query: Optional[dict] = None,
        skip: int = 0,
        limit: int = 10,
        sort: Optional[SortSpec] = None,
        projection: Optional[dict] = None,
    ) -> FindResult:
        records = filter_records(await self._client.read(collection), query)
        ordered = sort_records(records, sort or DEFAULT_SORT)
        page = [project(record, projection) for record in paginate(ordered, skip, limit)]
        return FindResult(data=page, total=len(records), skip=skip, limit=limit)
    
    async def count(self, collection: str, query: Optional[dict] = None) -> int:
        return len(filter_records(await self._client.read(collection), query))
    
    async def update(self, collection: str, record_id: str, changes: dict) -> dict:
        return await self._client.update_by_id(collection, record_id, changes)
    
    async def delete(self, collection: str, record_id: str) -> None:
        await self._client.delete_by_id(collection, record_id)
    
    async def delete_many(self, collection: str, query: dict) -> int:
        return await self._client.delete_where(
            collection, lambda record: matches(record, query)
        )
    
    async def aggregate(self, collection: str, pipeline: Sequence[dict]) -> list[dict]:
        return run_pipeline(await self._client.read(collection), pipeline)
    
    async def with_transaction(
        self,
        body: Callable[[RecordStoreInterface], Awaitable[T]],
    ) -> T:
        """
        Snapshot every collection, run body, restore on failure.
        
        Transactions are serialized with each other. Writers outside a
        transaction are not isolated from its rollback.
        """
        async with self._transaction_lock:
            captured = await self._client.snapshot()
            try:
                return await body(self)
            except BaseException:
                logger.warning("file_transaction_rolled_back", collections=sorted(captured))
                await self._client.restore(captured)
                raise
