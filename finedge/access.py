"""
Access Facade for FinEdge

This module ties together all the components and is the single entry
point the (external) API layer talks to:
1. Records (validate -> persist -> audit)
2. Users (register, authenticate, change password, cascade delete)
3. Summaries (aggregation engine)
4. Tokens (issue, verify, refresh)

DESIGN DECISION: The facade enforces the boundaries:
- Nothing reaches storage without passing the validator
- Raw passwords are hashed here and never leave this module
- Every mutation is audited after it succeeds
- The storage backend is chosen once, in create_app_components()

Storage-level DuplicateKeyError becomes ConflictError here. NotFoundError and
ValidationFailedError pass through unchanged. StorageUnavailableError on a
mutation is audited, then re-raised.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

import structlog
from pydantic import BaseModel, ValidationError

from finedge.audit import AuditLogger, configure_logging
from finedge.config import Settings, get_settings
from finedge.errors import (
    ConflictError,
    UnauthorizedError,
    ValidationFailedError,
)
from finedge.models.base import storage_dump, storage_now
from finedge.models.query import Page, PageRequest, TransactionFilter
from finedge.models.summary import (
    CategorySummary,
    DailySpending,
    MonthlySummary,
    SummaryReport,
)
from finedge.models.transaction import TransactionRecord
from finedge.models.user import UserFilter, UserRecord, normalize_email
from finedge.models.validation import ValidationIssue
from finedge.queries.aggregation import AggregationEngine
from finedge.services.auth import (
    TokenClaims,
    TokenError,
    TokenService,
    hash_password,
    verify_password,
)
from finedge.services.storage import (
    DocumentRecordStore,
    DuplicateKeyError,
    FileRecordStore,
    JsonFileClient,
    MongoConnection,
    RecordStoreInterface,
    StorageUnavailableError,
)
from finedge.services.storage.interface import record_not_found
from finedge.validation import RecordValidator, issues_from_pydantic


logger = structlog.get_logger(__name__)


class CollectionKind(str, Enum):
    """Record kinds the facade manages."""
    USERS = "users"
    TRANSACTIONS = "transactions"


_RECORD_MODELS: dict[CollectionKind, type[BaseModel]] = {
    CollectionKind.USERS: UserRecord,
    CollectionKind.TRANSACTIONS: TransactionRecord,
}

_FILTER_MODELS: dict[CollectionKind, type[BaseModel]] = {
    CollectionKind.USERS: UserFilter,
    CollectionKind.TRANSACTIONS: TransactionFilter,
}

Record = Union[UserRecord, TransactionRecord]


def _new_id() -> str:
    return uuid4().hex


class DataAccess:
    """
    Uniform operations over users and transactions.
    
    Holds exactly one record store; it never checks which backend it got.
    """
    
    def __init__(
        self,
        store: RecordStoreInterface,
        token_service: TokenService,
        validator: RecordValidator,
        aggregation: Optional[AggregationEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        self._store = store
        self._tokens = token_service
        self._validator = validator
        self._aggregation = aggregation or AggregationEngine(store)
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings()
    
    @property
    def store(self) -> RecordStoreInterface:
        return self._store
    
    @asynccontextmanager
    async def _reporting_outages(self, operation: str, kind: CollectionKind):
        """Audit a storage outage on a mutation, then let it propagate."""
        try:
            yield
        except StorageUnavailableError as e:
            await self._audit.log_storage_error(operation, e.message, kind.value)
            raise
    
    # =========================================================================
    # LIFECYCLE
    # =========================================================================
    
    async def connect(self) -> None:
        await self._store.connect()
    
    async def close(self) -> None:
        await self._store.close()
    
    # =========================================================================
    # GENERIC RECORD OPERATIONS
    # =========================================================================
    
    async def create(self, kind: CollectionKind, data: Union[dict, BaseModel]) -> Record:
        """
        Validate and persist a new record.
        
        Raises:
            ValidationFailedError: Input rejected before persistence
            ConflictError: Email already registered
            NotFoundError: Transaction owner does not exist
        """
        kind = CollectionKind(kind)
        if kind == CollectionKind.USERS:
            return await self._create_user(data)
        return await self._create_transaction(data)
    
    async def _create_user(self, data: Union[dict, BaseModel]) -> UserRecord:
        user = self._validator.validate_user(data)
        if await self.get_user_by_email(user.email) is not None:
            raise ConflictError("Email already registered", field="email")
        
        now = storage_now()
        record = UserRecord(
            id=_new_id(),
            email=user.email,
            password_hash=hash_password(
                user.password, self._settings.security.bcrypt_rounds
            ),
            first_name=user.first_name,
            last_name=user.last_name,
            preferences=user.preferences,
            created_at=now,
            updated_at=now,
        )
        await self._insert(CollectionKind.USERS, storage_dump(record), ("email",))
        await self._audit.log_record_created(CollectionKind.USERS.value, record.id, record.id)
        return record
    
    async def _create_transaction(self, data: Union[dict, BaseModel]) -> TransactionRecord:
        txn = self._validator.validate_transaction(data)
        if await self._store.find_by_id(CollectionKind.USERS.value, txn.user_id) is None:
            raise record_not_found(CollectionKind.USERS.value, txn.user_id)
        
        now = storage_now()
        record = TransactionRecord(
            **txn.model_dump(),
            id=_new_id(),
            created_at=now,
            updated_at=now,
        )
        await self._insert(CollectionKind.TRANSACTIONS, storage_dump(record))
        await self._audit.log_record_created(
            CollectionKind.TRANSACTIONS.value, record.id, record.user_id
        )
        return record
    
    async def _insert(
        self,
        kind: CollectionKind,
        document: dict,
        unique_fields: tuple[str, ...] = (),
    ) -> None:
        try:
            async with self._reporting_outages("create", kind):
                await self._store.create(kind.value, document, unique_fields)
        except DuplicateKeyError as e:
            message = "Email already registered" if e.field == "email" else e.message
            raise ConflictError(message, field=e.field) from e
    
    async def get_by_id(
        self,
        kind: CollectionKind,
        record_id: str,
        owner_id: Optional[str] = None,
    ) -> Record:
        """
        Fetch one record.
        
        owner_id restricts transactions to their owner; a transaction
        owned by someone else is reported as not found.
        
        Raises:
            NotFoundError: No such record (or not owned by owner_id)
        """
        kind = CollectionKind(kind)
        raw = await self._store.find_by_id(kind.value, record_id)
        if raw is None:
            raise record_not_found(kind.value, record_id)
        record = _RECORD_MODELS[kind].model_validate(raw)
        if owner_id is not None and getattr(record, "user_id", owner_id) != owner_id:
            raise record_not_found(kind.value, record_id)
        return record
    
    def _filter_query(self, kind: CollectionKind, filters: Any) -> dict:
        if filters is None:
            return {}
        if isinstance(filters, dict):
            try:
                filters = _FILTER_MODELS[kind].model_validate(filters)
            except ValidationError as e:
                raise ValidationFailedError("Invalid filter", issues_from_pydantic(e)) from e
        return filters.to_query()
    
    async def find(
        self,
        kind: CollectionKind,
        filters: Union[TransactionFilter, UserFilter, dict, None] = None,
        page: Optional[PageRequest] = None,
    ) -> Page:
        """
        Filter, sort and paginate records.
        
        The limit is capped at the configured max_page_size. Calling find
        twice without an intervening write returns the same page.
        """
        kind = CollectionKind(kind)
        query = self._filter_query(kind, filters)
        page = page or PageRequest(limit=self._settings.limits.default_page_size)
        page = page.capped(self._settings.limits.max_page_size)
        
        sort = page.sort_spec()
        if kind == CollectionKind.USERS:
            # Users have no effective date; order them by registration
            sort = [("created_at" if name == "date" else name, sign) for name, sign in sort]
        
        result = await self._store.find(
            kind.value,
            query,
            skip=page.skip,
            limit=page.limit,
            sort=sort,
        )
        model = _RECORD_MODELS[kind]
        return Page[model](
            data=[model.model_validate(raw) for raw in result.data],
            total=result.total,
            skip=result.skip,
            limit=result.limit,
            pages=result.pages,
        )
    
    async def update(
        self,
        kind: CollectionKind,
        record_id: str,
        partial: Union[dict, BaseModel],
        owner_id: Optional[str] = None,
    ) -> Record:
        """
        Merge a validated partial update over an existing record.
        
        Unspecified fields are preserved and updated_at is refreshed.
        """
        kind = CollectionKind(kind)
        existing = await self.get_by_id(kind, record_id, owner_id)
        if kind == CollectionKind.USERS:
            changes = self._validator.validate_user_update(existing, partial)
        else:
            changes = self._validator.validate_transaction_update(existing, partial)
        
        if not changes:
            return existing
        
        changes["updated_at"] = storage_now()
        async with self._reporting_outages("update", kind):
            raw = await self._store.update(kind.value, record_id, changes)
        await self._audit.log_record_updated(
            kind.value,
            record_id,
            [name for name in changes if name != "updated_at"],
            getattr(existing, "user_id", record_id),
        )
        return _RECORD_MODELS[kind].model_validate(raw)
    
    async def delete(
        self,
        kind: CollectionKind,
        record_id: str,
        owner_id: Optional[str] = None,
    ) -> None:
        """
        Delete one record.
        
        Deleting a user also deletes their transactions (see delete_user).
        """
        kind = CollectionKind(kind)
        if kind == CollectionKind.USERS:
            await self.delete_user(record_id)
            return
        await self.get_by_id(kind, record_id, owner_id)
        async with self._reporting_outages("delete", kind):
            await self._store.delete(kind.value, record_id)
        await self._audit.log_record_deleted(kind.value, record_id)
    
    # =========================================================================
    # USERS
    # =========================================================================
    
    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        raw = await self._store.find_one(
            CollectionKind.USERS.value, {"email": normalize_email(email)}
        )
        return UserRecord.model_validate(raw) if raw is not None else None
    
    async def authenticate_user(self, email: str, password: str) -> UserRecord:
        """
        Check credentials and record the login time.
        
        Unknown email, inactive account and wrong password all fail the
        same way so callers cannot tell which emails exist.
        
        Raises:
            UnauthorizedError: Credentials rejected
        """
        user = await self.get_user_by_email(email)
        if user is None or not user.is_active or not verify_password(password, user.password_hash):
            await self._audit.log_login(user.id if user else None, normalize_email(email), False)
            raise UnauthorizedError("Invalid email or password")
        
        now = storage_now()
        raw = await self._store.update(
            CollectionKind.USERS.value,
            user.id,
            {"last_login": now, "updated_at": now},
        )
        await self._audit.log_login(user.id, user.email, True)
        return UserRecord.model_validate(raw)
    
    async def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
    ) -> None:
        """
        Replace a user's password after checking the current one.
        
        Raises:
            UnauthorizedError: Current password is wrong
            ValidationFailedError: New password has an invalid length
        """
        user = await self.get_by_id(CollectionKind.USERS, user_id)
        if not verify_password(current_password, user.password_hash):
            raise UnauthorizedError("Current password is incorrect")
        if not 6 <= len(new_password) <= 72:
            raise ValidationFailedError("Invalid password", [ValidationIssue(
                field="new_password",
                issue_type="invalid_length",
                message="Password must be between 6 and 72 characters",
                severity="error",
            )])
        
        await self._store.update(
            CollectionKind.USERS.value,
            user_id,
            {
                "password_hash": hash_password(
                    new_password, self._settings.security.bcrypt_rounds
                ),
                "updated_at": storage_now(),
            },
        )
        await self._audit.log_password_changed(user_id)
    
    async def update_preferences(self, user_id: str, preferences: dict) -> UserRecord:
        """Merge preference keys over the stored preferences."""
        return await self.update(CollectionKind.USERS, user_id, {"preferences": preferences})
    
    async def delete_user(self, user_id: str) -> int:
        """
        Delete a user and every transaction they own, all or nothing.
        
        Returns:
            Number of transactions removed with the user
        """
        await self.get_by_id(CollectionKind.USERS, user_id)
        
        async def _cascade(store: RecordStoreInterface) -> int:
            removed = await store.delete_many(
                CollectionKind.TRANSACTIONS.value, {"user_id": user_id}
            )
            await store.delete(CollectionKind.USERS.value, user_id)
            return removed
        
        async with self._reporting_outages("delete", CollectionKind.USERS):
            removed = await self._store.with_transaction(_cascade)
        logger.info("user_deleted", user_id=user_id, transactions_removed=removed)
        await self._audit.log_record_deleted(CollectionKind.USERS.value, user_id, removed)
        return removed
    
    # =========================================================================
    # SUMMARIES
    # =========================================================================
    
    async def summarize(self, user_id: str, month: Optional[str] = None) -> SummaryReport:
        """
        Income/expense summary, optionally scoped to a YYYY-MM month.
        
        Raises:
            ValidationFailedError: Malformed month
        """
        try:
            return await self._aggregation.summarize_user(user_id, month)
        except ValueError as e:
            raise ValidationFailedError(str(e), [ValidationIssue(
                field="month",
                issue_type="invalid_format",
                message=str(e),
                severity="error",
                suggested_fix="Use YYYY-MM, e.g. 2024-03",
            )]) from e
    
    async def category_summary(
        self,
        user_id: str,
        category: str,
        start_date: Optional[Union[date, datetime]] = None,
        end_date: Optional[Union[date, datetime]] = None,
    ) -> CategorySummary:
        return await self._aggregation.category_summary(
            user_id, category, start_date, end_date
        )
    
    async def monthly_comparison(
        self,
        user_id: str,
        months_back: int = 3,
        today: Optional[date] = None,
    ) -> list[MonthlySummary]:
        return await self._aggregation.monthly_comparison(user_id, months_back, today)
    
    async def spending_trends(
        self,
        user_id: str,
        days: int = 30,
        today: Optional[date] = None,
    ) -> list[DailySpending]:
        return await self._aggregation.spending_trends(user_id, days, today)
    
    # =========================================================================
    # TOKENS
    # =========================================================================
    
    async def issue_token(self, claims: Union[dict, TokenClaims]) -> str:
        token = self._tokens.issue(claims)
        subject = claims.sub if isinstance(claims, TokenClaims) else claims.get("sub", "")
        token_type = claims.type if isinstance(claims, TokenClaims) else claims.get("type", "session")
        await self._audit.log_token_issued(subject, token_type)
        return token
    
    async def verify_token(self, token: str) -> TokenClaims:
        """
        Verify a token. Rejections are audited by failure kind only.
        
        Raises:
            TokenError: Malformed, tampered or expired token
        """
        try:
            return self._tokens.verify(token)
        except TokenError as e:
            await self._audit.log_token_rejected(type(e).__name__)
            raise
    
    async def refresh_token(self, token: str) -> str:
        """Reissue a still-valid token. Expired tokens cannot be refreshed."""
        try:
            refreshed = self._tokens.refresh(token)
        except TokenError as e:
            await self._audit.log_token_rejected(type(e).__name__)
            raise
        claims = self._tokens.verify(refreshed)
        await self._audit.log_token_issued(claims.sub, claims.type, refreshed=True)
        return refreshed
    
    async def create_session_token(self, user: UserRecord) -> str:
        token = self._tokens.create_session_token(user.id, user.email)
        await self._audit.log_token_issued(user.id, "session")
        return token


def create_store(settings: Settings) -> RecordStoreInterface:
    """Build the single record store selected by STORAGE_BACKEND."""
    backend = settings.storage.backend
    if backend == "file":
        client = JsonFileClient(
            settings.storage.data_dir,
            settings.storage.collection_paths(),
        )
        return FileRecordStore(client)
    if backend == "document-db":
        return DocumentRecordStore(MongoConnection(settings.mongodb))
    raise ValueError(f"Unknown storage backend: {backend}")


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[RecordStoreInterface] = None,
) -> DataAccess:
    """
    Factory function to create all application components.
    
    Args:
        settings: Settings to build from. Defaults to get_settings().
        store: Pre-built record store (tests inject one). Defaults to the
               backend selected by settings.storage.backend.
    
    Returns:
        A DataAccess facade. Call connect() before use, or let the store
        connect lazily on first operation.
    """
    settings = settings or get_settings()
    configure_logging(settings.app.log_level)
    
    store = store or create_store(settings)
    logger.info(
        "app_components_created",
        store=type(store).__name__,
        environment=settings.app.environment,
    )
    
    return DataAccess(
        store=store,
        token_service=TokenService(
            settings.security.token_secret,
            settings.security.token_lifetime_seconds,
        ),
        validator=RecordValidator(settings.limits),
        aggregation=AggregationEngine(store),
        audit_logger=AuditLogger(store),
        settings=settings,
    )
