"""
FastAPI dependencies for the API.

Provides:
- Database session management
- JWT-based authentication
- Role-based authorization
- Block access scope, resolved once per request
- Field encryption
- Repositories
"""

import logging
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from kurator.config import settings
from kurator.db.repositories import (
    AuditLogRepository,
    BlockRepository,
    ContactRepository,
    FAQRepository,
    InteractionRepository,
    ReferenceRepository,
    UserRepository,
    WatchlistRepository,
)
from kurator.security.access import AccessScopeResolver, resolver_for
from kurator.security.auth import (
    AuthenticationError,
    AuthorizationError,
    Principal,
    UserRole,
    require_role,
    verify_access_token,
)
from kurator.security.encryption import FieldEncryption
from kurator.security.mfa import MfaService

logger = logging.getLogger(__name__)


# HTTP Bearer token extractor
security = HTTPBearer(auto_error=False)


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Get database session from request state.

    Uses the session factory stored during app startup.
    """
    async with request.app.state.db_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Type alias for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_field_encryption(request: Request) -> FieldEncryption:
    """Field encryption instance built at startup."""
    return request.app.state.field_encryption


Encryption = Annotated[FieldEncryption, Depends(get_field_encryption)]


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Principal:
    """
    Get the authenticated principal from the JWT bearer token.

    Raises:
        HTTPException: 401 if not authenticated
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return verify_access_token(credentials.credentials)
    except AuthenticationError as e:
        logger.warning(f"JWT authentication failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


# Type alias for dependency injection
User = Annotated[Principal, Depends(get_current_user)]


def _require(user: Principal, *roles: UserRole) -> Principal:
    try:
        require_role(user, *roles)
        return user
    except AuthorizationError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(e),
        ) from e


async def require_admin(user: User) -> Principal:
    """Require admin role."""
    return _require(user, UserRole.ADMIN)


async def require_curator(user: User) -> Principal:
    """Require admin or curator role (block-scoped data)."""
    return _require(user, UserRole.ADMIN, UserRole.CURATOR)


async def require_threat_analyst(user: User) -> Principal:
    """Require admin or threat analyst role (watchlist)."""
    return _require(user, UserRole.ADMIN, UserRole.THREAT_ANALYST)


# Role-checked user types
AdminUser = Annotated[Principal, Depends(require_admin)]
CuratorUser = Annotated[Principal, Depends(require_curator)]
AnalystUser = Annotated[Principal, Depends(require_threat_analyst)]


def get_user_repo(session: DbSession) -> UserRepository:
    """Get user repository."""
    return UserRepository(session)


def get_block_repo(session: DbSession) -> BlockRepository:
    """Get block repository."""
    return BlockRepository(session)


def get_contact_repo(session: DbSession) -> ContactRepository:
    """Get contact repository."""
    return ContactRepository(session)


def get_interaction_repo(session: DbSession) -> InteractionRepository:
    """Get interaction repository."""
    return InteractionRepository(session)


def get_watchlist_repo(session: DbSession) -> WatchlistRepository:
    """Get watchlist repository."""
    return WatchlistRepository(session)


def get_reference_repo(session: DbSession) -> ReferenceRepository:
    """Get reference value repository."""
    return ReferenceRepository(session)


def get_faq_repo(session: DbSession) -> FAQRepository:
    """Get FAQ repository."""
    return FAQRepository(session)


def get_audit_repo(session: DbSession) -> AuditLogRepository:
    """Get audit log repository."""
    return AuditLogRepository(session)


# Type aliases for repositories
UserRepo = Annotated[UserRepository, Depends(get_user_repo)]
BlockRepo = Annotated[BlockRepository, Depends(get_block_repo)]
ContactRepo = Annotated[ContactRepository, Depends(get_contact_repo)]
InteractionRepo = Annotated[InteractionRepository, Depends(get_interaction_repo)]
WatchlistRepo = Annotated[WatchlistRepository, Depends(get_watchlist_repo)]
ReferenceRepo = Annotated[ReferenceRepository, Depends(get_reference_repo)]
FAQRepo = Annotated[FAQRepository, Depends(get_faq_repo)]
AuditRepo = Annotated[AuditLogRepository, Depends(get_audit_repo)]


async def get_scope(user: User, block_repo: BlockRepo) -> AccessScopeResolver:
    """
    Access scope of the current principal.

    Assignments are loaded once per request; FastAPI caches the resolver
    for every other dependency and handler that asks for it.
    """
    if user.role == UserRole.CURATOR:
        assignments = await block_repo.assignments_for_user(user.id)
    else:
        assignments = []
    return resolver_for(user, assignments)


Scope = Annotated[AccessScopeResolver, Depends(get_scope)]


def get_mfa_service(user_repo: UserRepo) -> MfaService:
    """Login and MFA state machine bound to the request session."""
    return MfaService(user_repo)


Mfa = Annotated[MfaService, Depends(get_mfa_service)]


class Pagination:
    """page / page_size query parameters."""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    ):
        self.page = page
        self.page_size = page_size

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def total_pages(self, total: int) -> int:
        return (total + self.page_size - 1) // self.page_size


Page = Annotated[Pagination, Depends()]
