"""
Abstract Storage Interface

DESIGN DECISION: We define one abstract capability set for storage.
Two backends implement it:
1. A flat JSON file per collection (no infrastructure needed)
2. A MongoDB document collection (native indexing, server-side aggregation)

The Access Facade holds exactly one of them, chosen at startup.
Business logic never checks which one it got.

Records cross this boundary as plain dicts keyed by "id". Given the same
sequence of operations, both backends must return the same logical results.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from finedge.errors import FinEdgeError, NotFoundError
from finedge.models.query import page_count


T = TypeVar("T")

SortSpec = Sequence[tuple[str, int]]


@dataclass
class FindResult:
    """A page of raw records plus counts computed independently of the page."""
    
    data: list[dict] = field(default_factory=list)
    total: int = 0
    skip: int = 0
    limit: int = 10
    
    @property
    def pages(self) -> int:
        return page_count(self.total, self.limit)


class RecordStoreInterface(ABC):
    """
    Abstract interface for record storage.
    
    Any storage implementation (flat file, MongoDB, etc.)
    must implement these methods.
    """
    
    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the backend handle.
        
        Idempotent: calling it while connected is a no-op. Safe to retry
        after a failure.
        
        Raises:
            StorageUnavailableError: If the backend cannot be reached
        """
        pass
    
    @abstractmethod
    async def close(self) -> None:
        """
        Release the backend handle.
        
        Operations after close() raise StorageUnavailableError until
        connect() is called again.
        """
        pass
    
    @abstractmethod
    async def create(
        self,
        collection: str,
        document: dict,
        unique_fields: Sequence[str] = (),
    ) -> dict:
        """
        Insert one record.
        
        Args:
            collection: Collection name
            document: Complete record, including its id and timestamps
            unique_fields: Fields that must not collide with an existing record
            
        Returns:
            The stored record
            
        Raises:
            DuplicateKeyError: If a unique field collides
        """
        pass
    
    @abstractmethod
    async def find_by_id(self, collection: str, record_id: str) -> Optional[dict]:
        """Return the record with this id, or None."""
        pass
    
    @abstractmethod
    async def find_one(self, collection: str, query: dict) -> Optional[dict]:
        """Return the first record (in insertion order) matching the query."""
        pass
    
    @abstractmethod
    async def find(
        self,
        collection: str,
        query: Optional[dict] = None,
        skip: int = 0,
        limit: int = 10,
        sort: Optional[SortSpec] = None,
        projection: Optional[dict] = None,
    ) -> FindResult:
        """
        Filter, order and slice records.
        
        Args:
            collection: Collection name
            query: Query document (see finedge.queries.engine)
            skip: Records to skip
            limit: Maximum records to return (>= 1)
            sort: (field, 1 | -1) pairs; defaults to newest created first
            projection: Inclusion or exclusion mapping
            
        Returns:
            FindResult whose total counts every match, not just the page
        """
        pass
    
    @abstractmethod
    async def count(self, collection: str, query: Optional[dict] = None) -> int:
        """Count matching records."""
        pass
    
    @abstractmethod
    async def update(self, collection: str, record_id: str, changes: dict) -> dict:
        """
        Merge changes over an existing record.
        
        Unspecified fields are preserved. The caller supplies updated_at.
        
        Returns:
            The record after the update
            
        Raises:
            NotFoundError: If no record has this id
        """
        pass
    
    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> None:
        """
        Delete one record.
        
        Raises:
            NotFoundError: If no record has this id
        """
        pass
    
    @abstractmethod
    async def delete_many(self, collection: str, query: dict) -> int:
        """Delete every matching record; returns how many were removed."""
        pass
    
    @abstractmethod
    async def aggregate(self, collection: str, pipeline: Sequence[dict]) -> list[dict]:
        """Run a $match/$group/$sort pipeline and return the resulting rows."""
        pass
    
    @abstractmethod
    async def with_transaction(
        self,
        body: Callable[["RecordStoreInterface"], Awaitable[T]],
    ) -> T:
        """
        Run body as one all-or-nothing unit.
        
        body receives the store it must write through. If body raises,
        none of its writes survive and the error propagates.
        """
        pass


DEFAULT_SORT: SortSpec = (("created_at", -1), ("id", -1))


class StorageError(FinEdgeError):
    """Base exception for storage operations."""
    
    status_code = 500


class StorageUnavailableError(StorageError):
    """Backend unreachable, closed, or failing at the I/O level."""
    pass


class DuplicateKeyError(StorageError):
    """A unique field collided with an existing record."""
    
    status_code = 409
    
    def __init__(self, field: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"{field} already exists")


def record_not_found(collection: str, record_id: str) -> NotFoundError:
    """NotFoundError naming the record kind the way users see it."""
    resource = {
        "users": "User",
        "transactions": "Transaction",
        "audit_events": "Audit event",
    }.get(collection, "Record")
    return NotFoundError(resource, record_id)
