"""Services package."""

from finedge.services.auth import (
    InvalidSignatureError,
    InvalidTokenFormatError,
    TokenError,
    TokenExpiredError,
    TokenService,
)
from finedge.services.storage import (
    DocumentRecordStore,
    DuplicateKeyError,
    FileRecordStore,
    JsonFileClient,
    MongoConnection,
    RecordStoreInterface,
    StorageError,
    StorageUnavailableError,
)

__all__ = [
    # Auth services
    "InvalidSignatureError",
    "InvalidTokenFormatError",
    "TokenError",
    "TokenExpiredError",
    "TokenService",
    # Storage services
    "DocumentRecordStore",
    "DuplicateKeyError",
    "FileRecordStore",
    "JsonFileClient",
    "MongoConnection",
    "RecordStoreInterface",
    "StorageError",
    "StorageUnavailableError",
]
