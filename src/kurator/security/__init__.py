"""
Kurator Security Module

Provides encryption, authentication, and authorization utilities.

Includes:
- Field encryption with AES-256-GCM
- Password hashing with Argon2id
- JWT authentication
- Block-scoped access control
- TOTP multi-factor authentication
"""

from kurator.security.encryption import (
    UNDECRYPTABLE,
    FieldEncryption,
    MisconfiguredKeyError,
)
from kurator.security.auth import (
    AuthenticationError,
    AuthorizationError,
    Principal,
    UserRole,
    TokenPayload,
    hash_password,
    verify_password,
    create_access_token,
    verify_access_token,
    require_role,
)
from kurator.security.access import (
    ALL_BLOCKS,
    AccessDecision,
    AccessScopeResolver,
    AdminScope,
    CuratorScope,
    NoBlockScope,
    resolver_for,
)
from kurator.security.mfa import (
    MfaOutcome,
    MfaResult,
    MfaService,
    MfaState,
    TotpService,
)

__all__ = [
    # Encryption
    "FieldEncryption",
    "MisconfiguredKeyError",
    "UNDECRYPTABLE",
    # Authentication
    "AuthenticationError",
    "AuthorizationError",
    "Principal",
    "UserRole",
    "TokenPayload",
    "hash_password",
    "verify_password",
    "create_access_token",
    "verify_access_token",
    "require_role",
    # Access scope
    "ALL_BLOCKS",
    "AccessDecision",
    "AccessScopeResolver",
    "AdminScope",
    "CuratorScope",
    "NoBlockScope",
    "resolver_for",
    # MFA
    "MfaOutcome",
    "MfaResult",
    "MfaService",
    "MfaState",
    "TotpService",
]
