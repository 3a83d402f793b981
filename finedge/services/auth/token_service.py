"""
Session Token Service

DESIGN DECISION: Tokens are signed by hand with stdlib HMAC-SHA256, not by
an external JWT library. The scheme is deliberately minimal and is NOT a
standards-compliant JWT implementation.

A token is an explicit three-field structure:

    base64url(header) . base64url(payload) . base64url(signature)

where signature = HMAC-SHA256(secret, "<header>.<payload>").

GUARANTEES:
- The secret never appears in any serialized segment
- Signatures are compared in constant time
- verify() only ever fails with one of three token errors
- decode_unverified() exists for logging; it is never used to authenticate
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from finedge.errors import FinEdgeError


DEFAULT_LIFETIME_SECONDS = 7 * 24 * 60 * 60
HEADER = {"alg": "HS256", "typ": "JWT"}
_B64URL_ALPHABET = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
)


class TokenError(FinEdgeError):
    """Base exception for token verification failures."""
    
    status_code = 401


class InvalidTokenFormatError(TokenError):
    """Token is not three well-formed segments."""
    
    def __init__(self, message: str = "Invalid token format"):
        super().__init__(message)


class InvalidSignatureError(TokenError):
    """Signature does not match header and payload."""
    
    def __init__(self, message: str = "Invalid token signature"):
        super().__init__(message)


class TokenExpiredError(TokenError):
    """Signature is valid but the token is past its expiry."""
    
    def __init__(self, message: str = "Token expired"):
        super().__init__(message)


class TokenClaims(BaseModel):
    """Claims carried in the payload segment."""
    model_config = ConfigDict(extra="ignore")
    
    sub: str = Field(..., min_length=1, description="Subject (user id)")
    email: str
    type: str = Field(default="session")
    iat: int = Field(default=0, description="Issued at, epoch seconds")
    exp: int = Field(default=0, description="Expires at, epoch seconds")


# =============================================================================
# PURE ENCODE / DECODE / SIGN
# =============================================================================

def encode_segment(data: bytes) -> str:
    """Unpadded base64url."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def decode_segment(segment: str) -> bytes:
    """Inverse of encode_segment; rejects anything that is not base64url."""
    if not segment or any(c not in _B64URL_ALPHABET for c in segment):
        raise InvalidTokenFormatError("Token segment is not base64url")
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError) as e:
        raise InvalidTokenFormatError("Token segment is not base64url") from e


def encode_json(data: dict) -> str:
    return encode_segment(
        json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")
    )


def decode_json(segment: str) -> dict:
    try:
        data = json.loads(decode_segment(segment).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidTokenFormatError("Token segment is not valid JSON") from e
    if not isinstance(data, dict):
        raise InvalidTokenFormatError("Token segment is not a JSON object")
    return data


def sign(signing_input: str, secret: str) -> str:
    """Keyed hash of the header.payload string."""
    digest = hmac.new(
        secret.encode("utf-8"),
        signing_input.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return encode_segment(digest)


def signatures_match(expected: str, actual: str) -> bool:
    """Constant-time comparison; never exits early on the first differing byte."""
    return hmac.compare_digest(expected.encode("ascii"), actual.encode("ascii", "replace"))


@dataclass(frozen=True)
class SignedToken:
    """The three segments of a token, still encoded."""
    
    header: str
    payload: str
    signature: str
    
    @property
    def signing_input(self) -> str:
        return f"{self.header}.{self.payload}"
    
    def encode(self) -> str:
        return f"{self.header}.{self.payload}.{self.signature}"
    
    @classmethod
    def decode(cls, token: str) -> "SignedToken":
        """
        Split a token string; fails unless there are exactly three segments.
        
        Segment contents are not checked here. A changed character anywhere
        in header or payload is caught by the signature comparison.
        """
        if not isinstance(token, str):
            raise InvalidTokenFormatError()
        parts = token.strip().split(".")
        if len(parts) != 3 or not all(parts):
            raise InvalidTokenFormatError()
        return cls(header=parts[0], payload=parts[1], signature=parts[2])
    
    @classmethod
    def create(cls, header: dict, claims: dict, secret: str) -> "SignedToken":
        header_segment = encode_json(header)
        payload_segment = encode_json(claims)
        signature = sign(f"{header_segment}.{payload_segment}", secret)
        return cls(header=header_segment, payload=payload_segment, signature=signature)
    
    def has_valid_signature(self, secret: str) -> bool:
        return signatures_match(sign(self.signing_input, secret), self.signature)


# =============================================================================
# SERVICE
# =============================================================================

class TokenService:
    """
    Issues and verifies time-bound session tokens.
    
    The clock is injectable so expiry can be tested without sleeping.
    """
    
    def __init__(
        self,
        secret: str,
        lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self._secret = secret
        self._lifetime = lifetime_seconds
        self._clock = clock or time.time
    
    def _now(self) -> int:
        return int(self._clock())
    
    def issue(self, claims: dict | TokenClaims) -> str:
        """
        Sign a new token.
        
        iat and exp are always set here; any supplied values are replaced.
        """
        if isinstance(claims, TokenClaims):
            body = claims.model_dump()
        else:
            body = dict(claims)
        now = self._now()
        body["iat"] = now
        body["exp"] = now + self._lifetime
        return SignedToken.create(HEADER, body, self._secret).encode()
    
    def verify(self, token: str) -> TokenClaims:
        """
        Check structure, signature and expiry, in that order.
        
        Raises:
            InvalidTokenFormatError: Not three segments, or unreadable payload
            InvalidSignatureError: Signature mismatch
            TokenExpiredError: exp is in the past
        """
        signed = SignedToken.decode(token)
        if not signed.has_valid_signature(self._secret):
            raise InvalidSignatureError()
        
        payload = decode_json(signed.payload)
        try:
            claims = TokenClaims.model_validate(payload)
        except ValidationError as e:
            raise InvalidTokenFormatError("Token claims are malformed") from e
        
        if claims.exp < self._now():
            raise TokenExpiredError()
        return claims
    
    def refresh(self, token: str) -> str:
        """
        Reissue a still-valid token with the same subject, email and type.
        
        An expired token cannot be refreshed.
        """
        claims = self.verify(token)
        return self.issue({
            "sub": claims.sub,
            "email": claims.email,
            "type": claims.type,
        })
    
    def decode_unverified(self, token: str) -> dict:
        """
        UNSAFE: read the payload without checking the signature.
        
        For logging and inspection only. Never use on the auth path.
        """
        return decode_json(SignedToken.decode(token).payload)
    
    def create_session_token(self, user_id: str, email: str) -> str:
        return self.issue({"sub": user_id, "email": email, "type": "session"})
