"""
Audit log API routes.

Read-only access to the audit trail. Requires admin role.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from kurator.api.deps import AdminUser, AuditRepo, Page, UserRepo
from kurator.api.errors import require_id
from kurator.db.orm import AuditActionType
from kurator.ids import MAX_ID

router = APIRouter()


class AuditLogResponse(BaseModel):
    id: int
    user_id: int
    user_login: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    timestamp: datetime


class PaginatedAuditResponse(BaseModel):
    items: list[AuditLogResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


async def _to_responses(logs, user_repo) -> list[AuditLogResponse]:
    logins = await user_repo.logins_by_id({log.user_id for log in logs})
    return [
        AuditLogResponse(
            id=log.id,
            user_id=log.user_id,
            user_login=logins.get(log.user_id),
            action=log.action.value,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            old_values=log.old_values,
            new_values=log.new_values,
            timestamp=log.timestamp,
        )
        for log in logs
    ]


@router.get("", response_model=PaginatedAuditResponse)
async def list_audit_logs(
    user: AdminUser,
    audit_repo: AuditRepo,
    user_repo: UserRepo,
    page: Page,
    user_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    action: Optional[AuditActionType] = Query(None),
    entity_type: Optional[str] = Query(None, max_length=100),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
):
    """Audit entries, newest first."""
    filters = {
        "user_id": user_id,
        "action": action,
        "entity_type": entity_type,
        "date_from": date_from,
        "date_to": date_to,
    }
    logs = await audit_repo.list_logs(limit=page.page_size, offset=page.offset, **filters)
    total = await audit_repo.count_logs(**filters)

    return PaginatedAuditResponse(
        items=await _to_responses(logs, user_repo),
        total=total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages(total),
    )


@router.get("/entity/{entity_type}/{entity_id}", response_model=list[AuditLogResponse])
async def entity_history(
    entity_type: str,
    entity_id: str,
    user: AdminUser,
    audit_repo: AuditRepo,
    user_repo: UserRepo,
):
    """Every recorded action on one entity."""
    logs = await audit_repo.get_for_entity(entity_type, entity_id)
    return await _to_responses(logs, user_repo)


@router.get("/user/{user_id}", response_model=list[AuditLogResponse])
async def user_activity(
    user_id: str,
    user: AdminUser,
    audit_repo: AuditRepo,
    user_repo: UserRepo,
    limit: int = Query(100, ge=1, le=500),
):
    logs = await audit_repo.list_logs(limit=limit, user_id=require_id(user_id, "User"))
    return await _to_responses(logs, user_repo)
