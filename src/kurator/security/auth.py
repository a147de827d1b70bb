"""
Authentication and Authorization for Kurator.

Implements:
- JWT token-based authentication
- Password hashing with Argon2
- Role checks for the Admin / Curator / ThreatAnalyst roles
"""

import calendar
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import uuid4

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field

from kurator.config import settings

logger = logging.getLogger(__name__)


# Password hasher (Argon2id)
ph = PasswordHasher(
    time_cost=3,        # Number of iterations
    memory_cost=65536,  # 64 MB
    parallelism=4,      # Number of parallel threads
    hash_len=32,        # Hash output length
    salt_len=16,        # Salt length
)


class UserRole(str, Enum):
    """User roles."""
    ADMIN = "Admin"                   # Full system access, bypasses block scope
    CURATOR = "Curator"               # Contacts and interactions in assigned blocks
    THREAT_ANALYST = "ThreatAnalyst"  # Watchlist only


class Principal(BaseModel):
    """The authenticated identity making a request."""

    model_config = ConfigDict(frozen=True)

    id: int
    login: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class TokenPayload(BaseModel):
    """JWT token payload."""
    sub: str                          # User ID
    login: str
    role: UserRole
    exp: datetime
    iat: datetime = Field(default_factory=datetime.utcnow)
    jti: str = Field(default_factory=lambda: uuid4().hex)


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class AuthorizationError(Exception):
    """Raised when authorization fails."""
    pass


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id.

    Args:
        password: Plain text password

    Returns:
        Hashed password string
    """
    return ph.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """
    Verify a password against its hash.

    An empty password or an unreadable stored hash never verifies.
    """
    if not password or not hashed:
        return False
    try:
        ph.verify(hashed, password)
        return True
    except VerifyMismatchError:
        return False
    except (VerificationError, InvalidHashError) as e:
        logger.warning(f"Password hash could not be verified: {type(e).__name__}")
        return False


def create_access_token(
    principal: Principal,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        principal: Identity to create the token for
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    payload = TokenPayload(
        sub=str(principal.id),
        login=principal.login,
        role=principal.role,
        exp=datetime.utcnow() + expires_delta,
    )

    # Registered time claims are NumericDate seconds
    claims = payload.model_dump(mode="json")
    claims["exp"] = calendar.timegm(payload.exp.utctimetuple())
    claims["iat"] = calendar.timegm(payload.iat.utctimetuple())

    return jwt.encode(
        claims,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> TokenPayload:
    """
    Decode and validate a JWT token.

    Raises:
        AuthenticationError: If token is invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return TokenPayload(**payload)
    except (JWTError, ValueError) as e:
        logger.warning(f"JWT decode failed: {e}")
        raise AuthenticationError("Invalid or expired token") from e


def verify_access_token(token: str) -> Principal:
    """
    Verify an access token and return the principal it was issued to.

    Raises:
        AuthenticationError: If token is invalid, expired, or malformed
    """
    payload = decode_token(token)
    if not payload.sub.isdigit():
        raise AuthenticationError("Invalid token subject")

    return Principal(id=int(payload.sub), login=payload.login, role=payload.role)


def require_role(principal: Principal, *roles: UserRole) -> None:
    """
    Check that the principal holds one of the given roles.

    Raises:
        AuthorizationError: If it doesn't
    """
    if principal.role not in roles:
        allowed = ", ".join(r.value for r in roles)
        raise AuthorizationError(
            f"Insufficient permissions. Required: {allowed}, "
            f"Current: {principal.role.value}"
        )
