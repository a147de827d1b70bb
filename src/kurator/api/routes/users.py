"""
User Management API routes.

Provides CRUD operations for users (admin only):
- List/filter users
- Get user details with block assignments
- Create/update users
- Deactivate users, toggle active flag
- Password resets
- Statistics

Plus password change for the authenticated user.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from kurator.api.deps import AdminUser, AuditRepo, BlockRepo, Page, User, UserRepo
from kurator.api.errors import not_found, require_id
from kurator.db.orm import AuditActionType, CuratorType
from kurator.security.auth import UserRole, verify_password

router = APIRouter()


# Models
class UserCreate(BaseModel):
    """User creation request."""

    login: str = Field(min_length=3, max_length=100)
    password: str = Field(min_length=8, max_length=200, description="Password must be at least 8 characters")
    role: UserRole = UserRole.CURATOR
    public_key: Optional[str] = None


class UserUpdate(BaseModel):
    """User update request."""

    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    public_key: Optional[str] = None


class PasswordReset(BaseModel):
    new_password: str = Field(min_length=8, max_length=200)


class PasswordChange(BaseModel):
    current_password: str = Field(max_length=200)
    new_password: str = Field(min_length=8, max_length=200)


class UserResponse(BaseModel):
    """User response."""

    id: int
    login: str
    role: str
    is_active: bool
    is_first_login: bool
    mfa_enabled: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None
    primary_block_ids: list[int] = []
    backup_block_ids: list[int] = []


class PaginatedUserResponse(BaseModel):
    """Paginated user list response."""

    items: list[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class CuratorResponse(BaseModel):
    id: int
    login: str


class UserStatistics(BaseModel):
    total_users: int
    active_users: int
    logged_in_last_month: int
    by_role: dict[str, int]


async def _to_response(db_user, block_repo) -> UserResponse:
    assignments = await block_repo.assignments_for_user(db_user.id)
    return UserResponse(
        id=db_user.id,
        login=db_user.login,
        role=db_user.role.value,
        is_active=db_user.is_active,
        is_first_login=db_user.is_first_login,
        mfa_enabled=db_user.mfa_enabled,
        created_at=db_user.created_at,
        last_login_at=db_user.last_login_at,
        primary_block_ids=sorted(a.block_id for a in assignments if a.curator_type == CuratorType.PRIMARY),
        backup_block_ids=sorted(a.block_id for a in assignments if a.curator_type == CuratorType.BACKUP),
    )


async def _get_or_404(user_repo, user_id: str):
    db_user = await user_repo.get_by_id(require_id(user_id, "User"))
    if db_user is None:
        raise not_found("User")
    return db_user


@router.get("", response_model=PaginatedUserResponse)
async def list_users(
    user: AdminUser,
    user_repo: UserRepo,
    block_repo: BlockRepo,
    page: Page,
    role: Optional[UserRole] = Query(None, description="Filter by role"),
    is_active: Optional[bool] = Query(None, description="Filter by active status"),
):
    """
    List users with pagination and filtering.

    Requires admin role.
    """
    users = await user_repo.list_users(
        role=role,
        is_active=is_active,
        limit=page.page_size,
        offset=page.offset,
    )
    total = await user_repo.count_users(role=role, is_active=is_active)

    return PaginatedUserResponse(
        items=[await _to_response(u, block_repo) for u in users],
        total=total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages(total),
    )


@router.get("/curators", response_model=list[CuratorResponse])
async def list_curators(user: AdminUser, user_repo: UserRepo):
    """Active curators, for block assignment forms."""
    curators = await user_repo.list_active_curators()
    return [CuratorResponse(id=c.id, login=c.login) for c in curators]


@router.get("/statistics", response_model=UserStatistics)
async def user_statistics(user: AdminUser, user_repo: UserRepo):
    """User counts by role and recent activity."""
    month_ago = datetime.utcnow() - timedelta(days=30)

    return UserStatistics(
        total_users=await user_repo.count_users(),
        active_users=await user_repo.count_users(is_active=True),
        logged_in_last_month=await user_repo.count_logged_in_since(month_ago),
        by_role=await user_repo.count_by_role(),
    )


@router.get("/me", response_model=UserResponse)
async def get_me(user: User, user_repo: UserRepo, block_repo: BlockRepo):
    """Profile of the authenticated user."""
    db_user = await user_repo.get_by_id(user.id)
    if db_user is None:
        raise not_found("User")
    return await _to_response(db_user, block_repo)


@router.post("/me/change-password", status_code=204)
async def change_own_password(
    data: PasswordChange,
    user: User,
    user_repo: UserRepo,
    audit_repo: AuditRepo,
):
    """Change the authenticated user's password. The current password is re-verified."""
    db_user = await user_repo.get_by_id(user.id)
    if db_user is None:
        raise not_found("User")
    if not verify_password(data.current_password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    await user_repo.set_password(db_user, data.new_password)
    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=db_user.id,
        new_values={"password": "changed"},
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, user: AdminUser, user_repo: UserRepo, block_repo: BlockRepo):
    """
    Get user by ID.

    Requires admin role.
    """
    db_user = await _get_or_404(user_repo, user_id)
    return await _to_response(db_user, block_repo)


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(
    data: UserCreate,
    user: AdminUser,
    user_repo: UserRepo,
    block_repo: BlockRepo,
    audit_repo: AuditRepo,
):
    """
    Create a new user.

    New accounts must enroll in MFA on first login. Requires admin role.
    """
    # Logins are compared case-sensitively
    if await user_repo.get_by_login(data.login):
        raise HTTPException(status_code=400, detail="User with this login already exists")

    new_user = await user_repo.create(
        login=data.login,
        password=data.password,
        role=data.role,
        public_key=data.public_key,
    )

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="User",
        entity_id=new_user.id,
        new_values={"login": new_user.login, "role": new_user.role.value},
    )

    return await _to_response(new_user, block_repo)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    user: AdminUser,
    user_repo: UserRepo,
    block_repo: BlockRepo,
    audit_repo: AuditRepo,
):
    """
    Update a user.

    Requires admin role.
    """
    db_user = await _get_or_404(user_repo, user_id)
    if db_user.id == user.id and data.is_active is False:
        raise HTTPException(status_code=400, detail="Cannot deactivate your own account")

    old_values = {"role": db_user.role.value, "is_active": db_user.is_active}

    if data.role is not None:
        db_user.role = data.role
    if data.is_active is not None:
        db_user.is_active = data.is_active
    if data.public_key is not None:
        db_user.public_key = data.public_key

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=db_user.id,
        old_values=old_values,
        new_values={"role": db_user.role.value, "is_active": db_user.is_active},
    )

    return await _to_response(db_user, block_repo)


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    user: AdminUser,
    user_repo: UserRepo,
    block_repo: BlockRepo,
    audit_repo: AuditRepo,
):
    """
    Deactivate a user.

    Users still assigned to blocks must be reassigned first. Requires admin role.
    """
    db_user = await _get_or_404(user_repo, user_id)

    if db_user.id == user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    if await block_repo.count_assignments_for_user(db_user.id) > 0:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete user assigned to blocks. Reassign blocks first.",
        )

    db_user.is_active = False

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.DELETE,
        entity_type="User",
        entity_id=db_user.id,
        old_values={"login": db_user.login, "role": db_user.role.value},
    )


@router.post("/{user_id}/toggle-active", response_model=UserResponse)
async def toggle_active(
    user_id: str,
    user: AdminUser,
    user_repo: UserRepo,
    block_repo: BlockRepo,
    audit_repo: AuditRepo,
):
    """Flip a user's active flag. Admins cannot deactivate themselves."""
    db_user = await _get_or_404(user_repo, user_id)
    if db_user.id == user.id:
        raise HTTPException(status_code=400, detail="Cannot deactivate your own account")

    db_user.is_active = not db_user.is_active

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=db_user.id,
        old_values={"is_active": not db_user.is_active},
        new_values={"is_active": db_user.is_active},
    )

    return await _to_response(db_user, block_repo)


@router.post("/{user_id}/change-password", status_code=204)
async def reset_password(
    user_id: str,
    data: PasswordReset,
    user: AdminUser,
    user_repo: UserRepo,
    audit_repo: AuditRepo,
):
    """Set a new password for a user. Requires admin role."""
    db_user = await _get_or_404(user_repo, user_id)
    await user_repo.set_password(db_user, data.new_password)

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="User",
        entity_id=db_user.id,
        new_values={"password": "reset"},
    )
