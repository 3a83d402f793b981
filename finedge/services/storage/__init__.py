"""
Storage Services Package

Provides the abstract record-store interface and its two implementations:
flat JSON files and MongoDB. Exactly one is selected at startup.
"""

from finedge.services.storage.interface import (
    DEFAULT_SORT,
    DuplicateKeyError,
    FindResult,
    RecordStoreInterface,
    StorageError,
    StorageUnavailableError,
)
from finedge.services.storage.file_store import (
    FileRecordStore,
    JsonFileClient,
)
from finedge.services.storage.document_store import (
    DocumentRecordStore,
    MongoConnection,
)

__all__ = [
    # Interface
    "DEFAULT_SORT",
    "FindResult",
    "RecordStoreInterface",
    # Exceptions
    "DuplicateKeyError",
    "StorageError",
    "StorageUnavailableError",
    # Flat-file implementation
    "FileRecordStore",
    "JsonFileClient",
    # MongoDB implementation
    "DocumentRecordStore",
    "MongoConnection",
]
