"""FAQ API routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from kurator.api.deps import AdminUser, AuditRepo, FAQRepo, User
from kurator.api.errors import not_found, require_id
from kurator.db.orm import FAQ, AuditActionType

router = APIRouter()


class FAQCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1)
    sort_order: int = 0


class FAQUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    content: Optional[str] = Field(default=None, min_length=1)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class FAQResponse(BaseModel):
    id: int
    title: str
    content: str
    sort_order: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


def _to_response(faq: FAQ) -> FAQResponse:
    return FAQResponse(
        id=faq.id,
        title=faq.title,
        content=faq.content,
        sort_order=faq.sort_order,
        is_active=faq.is_active,
        created_at=faq.created_at,
        updated_at=faq.updated_at,
    )


async def _get_or_404(faq_repo, faq_id: str, active_only: bool = False) -> FAQ:
    faq = await faq_repo.get_by_id(require_id(faq_id, "FAQ"))
    if faq is None or (active_only and not faq.is_active):
        raise not_found("FAQ")
    return faq


@router.get("", response_model=list[FAQResponse])
async def list_faq(user: User, faq_repo: FAQRepo):
    """Active entries in display order."""
    return [_to_response(f) for f in await faq_repo.list_active()]


@router.get("/{faq_id}", response_model=FAQResponse)
async def get_faq(faq_id: str, user: User, faq_repo: FAQRepo):
    return _to_response(await _get_or_404(faq_repo, faq_id, active_only=True))


@router.post("", response_model=FAQResponse, status_code=201)
async def create_faq(data: FAQCreate, user: AdminUser, faq_repo: FAQRepo, audit_repo: AuditRepo):
    faq = await faq_repo.add(
        FAQ(
            title=data.title,
            content=data.content,
            sort_order=data.sort_order,
            is_active=True,
            updated_by=user.id,
        )
    )

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="FAQ",
        entity_id=faq.id,
        new_values={"title": faq.title},
    )
    return _to_response(faq)


@router.put("/{faq_id}", response_model=FAQResponse)
async def update_faq(faq_id: str, data: FAQUpdate, user: AdminUser, faq_repo: FAQRepo, audit_repo: AuditRepo):
    faq = await _get_or_404(faq_repo, faq_id)
    old_values = {"title": faq.title, "is_active": faq.is_active}

    if data.title is not None:
        faq.title = data.title
    if data.content is not None:
        faq.content = data.content
    if data.sort_order is not None:
        faq.sort_order = data.sort_order
    if data.is_active is not None:
        faq.is_active = data.is_active
    faq.updated_at = datetime.utcnow()
    faq.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="FAQ",
        entity_id=faq.id,
        old_values=old_values,
        new_values={"title": faq.title, "is_active": faq.is_active},
    )
    return _to_response(faq)


@router.delete("/{faq_id}", status_code=204)
async def delete_faq(faq_id: str, user: AdminUser, faq_repo: FAQRepo, audit_repo: AuditRepo):
    """Deactivate an entry."""
    faq = await _get_or_404(faq_repo, faq_id)
    faq.is_active = False
    faq.updated_at = datetime.utcnow()
    faq.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.DELETE,
        entity_type="FAQ",
        entity_id=faq.id,
        old_values={"title": faq.title},
    )
