"""Authentication services: session tokens and password hashing."""

from finedge.services.auth.passwords import hash_password, verify_password
from finedge.services.auth.token_service import (
    InvalidSignatureError,
    InvalidTokenFormatError,
    SignedToken,
    TokenClaims,
    TokenError,
    TokenExpiredError,
    TokenService,
)

__all__ = [
    "InvalidSignatureError",
    "InvalidTokenFormatError",
    "SignedToken",
    "TokenClaims",
    "TokenError",
    "TokenExpiredError",
    "TokenService",
    "hash_password",
    "verify_password",
]
