"""
Reference value API routes.

Reference values are the dictionaries behind the numeric ids on contacts
and interactions (influence statuses, interaction types, results, ...).
Any authenticated user may read them; admins maintain them.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from kurator.api.deps import AdminUser, AuditRepo, ReferenceRepo, User
from kurator.api.errors import not_found, require_id
from kurator.db.orm import AuditActionType, ReferenceValue

logger = logging.getLogger(__name__)

router = APIRouter()


class ReferenceCreate(BaseModel):
    category: str = Field(min_length=1, max_length=100)
    code: str = Field(min_length=1, max_length=100)
    value: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    sort_order: int = 0


class ReferenceUpdate(BaseModel):
    value: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class ReferenceResponse(BaseModel):
    id: int
    category: str
    code: str
    value: str
    description: Optional[str] = None
    sort_order: int
    is_active: bool


def _to_response(ref: ReferenceValue) -> ReferenceResponse:
    return ReferenceResponse(
        id=ref.id,
        category=ref.category,
        code=ref.code,
        value=ref.value,
        description=ref.description,
        sort_order=ref.sort_order,
        is_active=ref.is_active,
    )


async def _get_or_404(reference_repo, reference_id: str) -> ReferenceValue:
    ref = await reference_repo.get_by_id(require_id(reference_id, "Reference value"))
    if ref is None:
        raise not_found("Reference value")
    return ref


@router.get("", response_model=list[ReferenceResponse])
async def list_references(
    user: User,
    reference_repo: ReferenceRepo,
    category: Optional[str] = Query(None, max_length=100),
    include_inactive: bool = Query(False),
):
    values = await reference_repo.list_values(category=category, include_inactive=include_inactive)
    return [_to_response(v) for v in values]


@router.get("/categories", response_model=list[str])
async def list_categories(user: User, reference_repo: ReferenceRepo):
    return await reference_repo.categories()


@router.get("/by-category", response_model=dict[str, list[ReferenceResponse]])
async def references_by_category(user: User, reference_repo: ReferenceRepo):
    """Active values grouped by category."""
    grouped: dict[str, list[ReferenceResponse]] = {}
    for value in await reference_repo.list_values():
        grouped.setdefault(value.category, []).append(_to_response(value))
    return grouped


@router.post("", response_model=ReferenceResponse, status_code=201)
async def create_reference(
    data: ReferenceCreate,
    user: AdminUser,
    reference_repo: ReferenceRepo,
    audit_repo: AuditRepo,
):
    """Create a reference value. Codes are unique within a category."""
    if await reference_repo.get_by_code(data.category, data.code):
        raise HTTPException(status_code=400, detail="Reference code already exists in this category")

    ref = await reference_repo.add(
        ReferenceValue(
            category=data.category,
            code=data.code,
            value=data.value,
            description=data.description,
            sort_order=data.sort_order,
            is_active=True,
        )
    )

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="ReferenceValue",
        entity_id=ref.id,
        new_values={"category": ref.category, "code": ref.code, "value": ref.value},
    )
    logger.info(f"Reference value created: {ref.category} - {ref.value}")

    return _to_response(ref)


@router.put("/{reference_id}", response_model=ReferenceResponse)
async def update_reference(
    reference_id: str,
    data: ReferenceUpdate,
    user: AdminUser,
    reference_repo: ReferenceRepo,
    audit_repo: AuditRepo,
):
    ref = await _get_or_404(reference_repo, reference_id)
    old_values = {"value": ref.value, "is_active": ref.is_active}

    if data.value is not None:
        ref.value = data.value
    if "description" in data.model_fields_set:
        ref.description = data.description
    if data.sort_order is not None:
        ref.sort_order = data.sort_order
    if data.is_active is not None:
        ref.is_active = data.is_active

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="ReferenceValue",
        entity_id=ref.id,
        old_values=old_values,
        new_values={"value": ref.value, "is_active": ref.is_active},
    )

    return _to_response(ref)


@router.post("/{reference_id}/toggle-active", response_model=ReferenceResponse)
async def toggle_reference(
    reference_id: str,
    user: AdminUser,
    reference_repo: ReferenceRepo,
    audit_repo: AuditRepo,
):
    """Flip a value's active flag. Inactive values stay resolvable by id."""
    ref = await _get_or_404(reference_repo, reference_id)
    ref.is_active = not ref.is_active

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="ReferenceValue",
        entity_id=ref.id,
        old_values={"is_active": not ref.is_active},
        new_values={"is_active": ref.is_active},
    )

    return _to_response(ref)
