"""
Authentication API routes for Kurator.

Provides endpoints for:
- Login (login/password), branching into MFA enrollment or verification
- MFA setup (TOTP secret issuance after password re-verification)
- MFA verification (code check, token issuance)
- Current principal
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from kurator.api.deps import AuditRepo, Mfa, User, UserRepo
from kurator.api.errors import not_found, raise_for_mfa
from kurator.config import settings
from kurator.db.orm import AuditActionType
from kurator.security.mfa import MfaResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


# Request/Response Models
class LoginRequest(BaseModel):
    """Login request body."""

    login: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., max_length=200)


class UserSummary(BaseModel):
    id: int
    login: str
    role: str
    is_first_login: bool
    mfa_enabled: bool


class LoginResponse(BaseModel):
    """
    Login outcome.

    Exactly one of the following holds: require_mfa_setup (first login),
    require_mfa_verification (MFA enabled), or access_token is set.
    """

    require_mfa_setup: bool = False
    require_mfa_verification: bool = False
    user_id: Optional[int] = None
    access_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user: Optional[UserSummary] = None
    message: Optional[str] = None


class SetupMfaRequest(BaseModel):
    """MFA enrollment request. Malformed user ids are answered with 404."""

    user_id: Any = None
    password: str = Field(default="", max_length=200)
    public_key: Optional[str] = None


class SetupMfaResponse(BaseModel):
    secret: str
    provisioning_uri: str
    message: str = "Scan the QR code with your authenticator app, then verify a code"


class VerifyMfaRequest(BaseModel):
    user_id: Any = None
    code: Any = None


def _summary(user) -> UserSummary:
    return UserSummary(
        id=user.id,
        login=user.login,
        role=user.role.value,
        is_first_login=user.is_first_login,
        mfa_enabled=user.mfa_enabled,
    )


def _token_response(token: str, user) -> LoginResponse:
    return LoginResponse(
        user_id=user.id,
        access_token=token,
        expires_in=settings.access_token_expire_minutes * 60,
        user=_summary(user),
    )


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
async def login(request: LoginRequest, mfa: Mfa, audit_repo: AuditRepo):
    """
    Authenticate with login and password.

    Returns a token only when the account neither needs MFA enrollment nor
    has MFA enabled.
    """
    outcome = await mfa.login(request.login, request.password)
    raise_for_mfa(outcome.result)

    if outcome.result == MfaResult.SETUP_REQUIRED:
        return LoginResponse(
            require_mfa_setup=True,
            user_id=outcome.user.id,
            message="First login detected. Please set up MFA.",
        )

    if outcome.result == MfaResult.MFA_REQUIRED:
        return LoginResponse(
            require_mfa_verification=True,
            user_id=outcome.user.id,
            message="MFA verification required",
        )

    await audit_repo.record(
        user_id=outcome.user.id,
        action=AuditActionType.LOGIN,
        entity_type="User",
        entity_id=outcome.user.id,
    )
    return _token_response(outcome.token, outcome.user)


@router.post("/setup-mfa", response_model=SetupMfaResponse)
async def setup_mfa(request: SetupMfaRequest, mfa: Mfa, audit_repo: AuditRepo):
    """Generate a TOTP secret. Requires the current password."""
    outcome = await mfa.setup_mfa(request.user_id, request.password, request.public_key)
    raise_for_mfa(outcome.result)

    await audit_repo.record(
        user_id=outcome.user.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=outcome.user.id,
        new_values={"mfa_state": outcome.user.mfa_state.value},
    )

    return SetupMfaResponse(secret=outcome.secret, provisioning_uri=outcome.provisioning_uri)


@router.post("/verify-mfa", response_model=LoginResponse, response_model_exclude_none=True)
async def verify_mfa(request: VerifyMfaRequest, mfa: Mfa, audit_repo: AuditRepo):
    """Verify a TOTP code. The first successful code enables MFA."""
    outcome = await mfa.verify_mfa(request.user_id, request.code)
    raise_for_mfa(outcome.result)

    if outcome.transitioned:
        await audit_repo.record(
            user_id=outcome.user.id,
            action=AuditActionType.UPDATE,
            entity_type="User",
            entity_id=outcome.user.id,
            old_values={"mfa_enabled": False},
            new_values={"mfa_enabled": True},
        )
    await audit_repo.record(
        user_id=outcome.user.id,
        action=AuditActionType.LOGIN,
        entity_type="User",
        entity_id=outcome.user.id,
    )

    return _token_response(outcome.token, outcome.user)


@router.get("/me", response_model=UserSummary)
async def me(user: User, user_repo: UserRepo):
    """Current principal."""
    db_user = await user_repo.get_by_id(user.id)
    if db_user is None:
        raise not_found("User")
    return _summary(db_user)
