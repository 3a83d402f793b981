"""
Configuration Management for FinEdge

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The storage backend, its connection target, the token secret and every
validation limit the core enforces are declared in one place and validated
at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_TOKEN_SECRET = "change-me-finedge-token-secret"


class StorageSettings(BaseSettings):
    """Which backend holds the records, and where the flat files live."""
    
    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore"
    )
    
    backend: Literal["file", "document-db"] = Field(
        default="file",
        description="Storage backend selected once at startup"
    )
    data_dir: str = Field(
        default="data",
        description="Directory holding one JSON file per collection"
    )
    
    # Explicit container paths (override data_dir/<collection>.json)
    users_file: Optional[str] = None
    transactions_file: Optional[str] = None
    audit_file: Optional[str] = None
    
    def collection_paths(self) -> dict[str, Path]:
        """Explicitly configured container files, keyed by collection name."""
        paths = {}
        if self.users_file:
            paths["users"] = Path(self.users_file)
        if self.transactions_file:
            paths["transactions"] = Path(self.transactions_file)
        if self.audit_file:
            paths["audit_events"] = Path(self.audit_file)
        return paths


class MongoSettings(BaseSettings):
    """Document database connection configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="MONGODB_",
        extra="ignore"
    )
    
    uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string"
    )
    database: str = Field(
        default="finedge",
        description="Database name"
    )
    
    # Fail fast instead of hanging the caller
    server_selection_timeout_ms: int = Field(default=5000, ge=100)
    connect_timeout_ms: int = Field(default=5000, ge=100)
    socket_timeout_ms: int = Field(default=45000, ge=1000)
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts before giving up"
    )
    
    @property
    def redacted_uri(self) -> str:
        """Connection target without credentials, for logging."""
        return self.uri.rsplit("@", 1)[-1]


class SecuritySettings(BaseSettings):
    """Token signing and password hashing configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="SECURITY_",
        extra="ignore"
    )
    
    token_secret: str = Field(
        default=DEFAULT_TOKEN_SECRET,
        min_length=8,
        description="Server-held HMAC secret for session tokens"
    )
    token_lifetime_seconds: int = Field(
        default=7 * 24 * 60 * 60,
        ge=1,
        description="Lifetime of an issued token"
    )
    bcrypt_rounds: int = Field(
        default=10,
        ge=4,
        le=16,
        description="bcrypt cost factor for password hashes"
    )


class LimitsSettings(BaseSettings):
    """Validation and pagination limits."""
    
    model_config = SettingsConfigDict(
        env_prefix="LIMITS_",
        extra="ignore"
    )
    
    max_amount: float = Field(
        default=1000000.0,
        gt=0,
        description="Maximum transaction amount"
    )
    max_description_length: int = Field(default=500, ge=1)
    max_category_length: int = Field(default=50, ge=1)
    max_page_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Upper bound for a page of results"
    )
    default_page_size: int = Field(default=10, ge=1, le=100)


class AppSettings(BaseSettings):
    """
    Main application settings.
    
    Loads configuration from environment variables and .env file.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="APP_",
        extra="ignore"
    )
    
    name: str = Field(default="FinEdge")
    environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Expose internal error detail"
    )
    log_level: str = Field(default="info")
    
    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().lower()
        if level not in {"debug", "info", "warning", "error", "critical"}:
            raise ValueError(f"Unknown log level: {v}")
        return level
    
    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


class Settings(BaseSettings):
    """
    Root settings container.
    
    Aggregates all sub-settings for easy access. Sub-settings can be
    passed explicitly (tests do this); otherwise they load from the
    environment.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    app: AppSettings = Field(default_factory=AppSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    mongodb: MongoSettings = Field(default_factory=MongoSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    limits: LimitsSettings = Field(default_factory=LimitsSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    
    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.
    
    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    
    sections = {
        "app": AppSettings,
        "storage": StorageSettings,
        "mongodb": MongoSettings,
        "security": SecuritySettings,
        "limits": LimitsSettings,
    }
    loaded = {}
    for name, section in sections.items():
        try:
            loaded[name] = section()
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
    
    app = loaded.get("app")
    security = loaded.get("security")
    if app and security and app.is_production:
        if security.token_secret == DEFAULT_TOKEN_SECRET:
            results["security"] = False
            results["security_error"] = "SECURITY_TOKEN_SECRET must be set in production"
    
    return results
