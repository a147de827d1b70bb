"""
Watchlist API routes.

Watchlist entries are not tied to blocks. Admins and threat analysts see
all of them; curators see none.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from kurator.api.deps import AdminUser, AnalystUser, AuditRepo, Page, WatchlistRepo
from kurator.api.errors import not_found, require_id
from kurator.db.orm import AuditActionType, MonitoringFrequency, RiskLevel, Watchlist
from kurator.ids import MAX_ID, RecordId

logger = logging.getLogger(__name__)

router = APIRouter()

CHECK_INTERVALS = {
    MonitoringFrequency.WEEKLY: timedelta(days=7),
    MonitoringFrequency.MONTHLY: timedelta(days=30),
    MonitoringFrequency.QUARTERLY: timedelta(days=90),
}


def next_check_after(frequency: MonitoringFrequency, checked_at: datetime) -> Optional[datetime]:
    """Next scheduled check for a monitoring frequency. Ad hoc entries have none."""
    interval = CHECK_INTERVALS.get(frequency)
    return checked_at + interval if interval else None


class WatchlistCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=500)
    role_status: Optional[str] = Field(default=None, max_length=500)
    risk_sphere_id: Optional[RecordId] = None
    threat_source: Optional[str] = None
    conflict_date: Optional[datetime] = None
    risk_level: RiskLevel = RiskLevel.LOW
    monitoring_frequency: MonitoringFrequency = MonitoringFrequency.MONTHLY
    last_check_date: Optional[datetime] = None
    next_check_date: Optional[datetime] = None
    dynamics_description: Optional[str] = None
    watch_owner_id: Optional[RecordId] = None


class WatchlistUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=500)
    role_status: Optional[str] = Field(default=None, max_length=500)
    risk_sphere_id: Optional[RecordId] = None
    threat_source: Optional[str] = None
    conflict_date: Optional[datetime] = None
    risk_level: Optional[RiskLevel] = None
    monitoring_frequency: Optional[MonitoringFrequency] = None
    last_check_date: Optional[datetime] = None
    next_check_date: Optional[datetime] = None
    dynamics_description: Optional[str] = None
    watch_owner_id: Optional[RecordId] = None
    comment: Optional[str] = Field(default=None, description="Recorded with a risk level change")


class CheckRequest(BaseModel):
    next_check_date: Optional[datetime] = None
    dynamics_update: Optional[str] = None
    new_risk_level: Optional[RiskLevel] = None
    comment: Optional[str] = None


class WatchlistResponse(BaseModel):
    id: int
    full_name: str
    role_status: Optional[str] = None
    risk_sphere_id: Optional[int] = None
    threat_source: Optional[str] = None
    conflict_date: Optional[datetime] = None
    risk_level: str
    monitoring_frequency: str
    last_check_date: Optional[datetime] = None
    next_check_date: Optional[datetime] = None
    dynamics_description: Optional[str] = None
    watch_owner_id: Optional[int] = None
    requires_check: bool = False
    created_at: datetime
    updated_at: datetime
    updated_by: Optional[int] = None


class PaginatedWatchlistResponse(BaseModel):
    items: list[WatchlistResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class WatchlistHistoryResponse(BaseModel):
    id: int
    old_risk_level: Optional[str] = None
    new_risk_level: str
    changed_by_user_id: int
    changed_at: datetime
    comment: Optional[str] = None


class WatchlistStatistics(BaseModel):
    total: int
    requires_check: int
    by_risk_level: dict[str, int]
    by_risk_sphere: dict[str, int]


def _to_response(entry: Watchlist, now: Optional[datetime] = None) -> WatchlistResponse:
    now = now or datetime.utcnow()
    return WatchlistResponse(
        id=entry.id,
        full_name=entry.full_name,
        role_status=entry.role_status,
        risk_sphere_id=entry.risk_sphere_id,
        threat_source=entry.threat_source,
        conflict_date=entry.conflict_date,
        risk_level=entry.risk_level.value,
        monitoring_frequency=entry.monitoring_frequency.value,
        last_check_date=entry.last_check_date,
        next_check_date=entry.next_check_date,
        dynamics_description=entry.dynamics_description,
        watch_owner_id=entry.watch_owner_id,
        requires_check=entry.next_check_date is not None and entry.next_check_date <= now,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        updated_by=entry.updated_by,
    )


async def _get_or_404(watchlist_repo, watchlist_id: str) -> Watchlist:
    entry = await watchlist_repo.get_by_id(require_id(watchlist_id, "Watchlist entry"))
    if entry is None or not entry.is_active:
        raise not_found("Watchlist entry")
    return entry


def _snapshot(entry: Watchlist) -> dict[str, Any]:
    return {
        "risk_level": entry.risk_level.value,
        "monitoring_frequency": entry.monitoring_frequency.value,
        "next_check_date": entry.next_check_date.isoformat() if entry.next_check_date else None,
    }


@router.get("", response_model=PaginatedWatchlistResponse)
async def list_watchlist(
    user: AnalystUser,
    watchlist_repo: WatchlistRepo,
    page: Page,
    risk_level: Optional[RiskLevel] = Query(None),
    risk_sphere_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    monitoring_frequency: Optional[MonitoringFrequency] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
):
    """List active watchlist entries, next check first."""
    filters = {
        "risk_level": risk_level,
        "risk_sphere_id": risk_sphere_id,
        "monitoring_frequency": monitoring_frequency,
        "search": search,
    }
    entries = await watchlist_repo.list_entries(limit=page.page_size, offset=page.offset, **filters)
    total = await watchlist_repo.count_entries(**filters)

    now = datetime.utcnow()
    return PaginatedWatchlistResponse(
        items=[_to_response(e, now) for e in entries],
        total=total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages(total),
    )


@router.get("/due-for-check", response_model=list[WatchlistResponse])
async def due_for_check(user: AnalystUser, watchlist_repo: WatchlistRepo):
    """Entries whose next check date has been reached."""
    now = datetime.utcnow()
    return [_to_response(e, now) for e in await watchlist_repo.due_for_check(now)]


@router.get("/statistics", response_model=WatchlistStatistics)
async def watchlist_statistics(user: AnalystUser, watchlist_repo: WatchlistRepo):
    return WatchlistStatistics(**await watchlist_repo.statistics())


@router.get("/{watchlist_id}", response_model=WatchlistResponse)
async def get_watchlist_entry(watchlist_id: str, user: AnalystUser, watchlist_repo: WatchlistRepo):
    return _to_response(await _get_or_404(watchlist_repo, watchlist_id))


@router.post("", response_model=WatchlistResponse, status_code=201)
async def create_watchlist_entry(
    data: WatchlistCreate,
    user: AnalystUser,
    watchlist_repo: WatchlistRepo,
    audit_repo: AuditRepo,
):
    entry = Watchlist(
        full_name=data.full_name,
        role_status=data.role_status,
        risk_sphere_id=data.risk_sphere_id,
        threat_source=data.threat_source,
        conflict_date=data.conflict_date,
        risk_level=data.risk_level,
        monitoring_frequency=data.monitoring_frequency,
        last_check_date=data.last_check_date,
        next_check_date=data.next_check_date,
        dynamics_description=data.dynamics_description,
        watch_owner_id=data.watch_owner_id if data.watch_owner_id is not None else user.id,
        is_active=True,
        updated_by=user.id,
    )
    await watchlist_repo.add(entry)

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="Watchlist",
        entity_id=entry.id,
        new_values=_snapshot(entry),
    )
    logger.info(f"Watchlist entry {entry.id} created by user {user.id}")

    return _to_response(entry)


@router.put("/{watchlist_id}", response_model=WatchlistResponse)
async def update_watchlist_entry(
    watchlist_id: str,
    data: WatchlistUpdate,
    user: AnalystUser,
    watchlist_repo: WatchlistRepo,
    audit_repo: AuditRepo,
):
    """Update an entry. A risk level change is appended to the entry's history."""
    entry = await _get_or_404(watchlist_repo, watchlist_id)
    fields = data.model_fields_set
    old_values = _snapshot(entry)

    if data.full_name is not None:
        entry.full_name = data.full_name
    if data.monitoring_frequency is not None:
        entry.monitoring_frequency = data.monitoring_frequency
    for name in (
        "role_status",
        "risk_sphere_id",
        "threat_source",
        "conflict_date",
        "last_check_date",
        "next_check_date",
        "dynamics_description",
        "watch_owner_id",
    ):
        if name in fields:
            setattr(entry, name, getattr(data, name))

    if data.risk_level is not None:
        await watchlist_repo.record_risk_change(entry, data.risk_level, user.id, data.comment)

    entry.updated_at = datetime.utcnow()
    entry.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="Watchlist",
        entity_id=entry.id,
        old_values=old_values,
        new_values=_snapshot(entry),
    )

    return _to_response(entry)


@router.post("/{watchlist_id}/check", response_model=WatchlistResponse)
async def record_check(
    watchlist_id: str,
    data: CheckRequest,
    user: AnalystUser,
    watchlist_repo: WatchlistRepo,
    audit_repo: AuditRepo,
):
    """
    Record a completed check.

    Without an explicit next check date the next one is scheduled from the
    entry's monitoring frequency.
    """
    entry = await _get_or_404(watchlist_repo, watchlist_id)
    old_values = _snapshot(entry)

    now = datetime.utcnow()
    entry.last_check_date = now
    entry.next_check_date = data.next_check_date or next_check_after(entry.monitoring_frequency, now)

    if data.dynamics_update:
        entry.dynamics_description = data.dynamics_update
    if data.new_risk_level is not None:
        await watchlist_repo.record_risk_change(entry, data.new_risk_level, user.id, data.comment)

    entry.updated_at = now
    entry.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="Watchlist",
        entity_id=entry.id,
        old_values=old_values,
        new_values=_snapshot(entry),
    )

    return _to_response(entry, now)


@router.delete("/{watchlist_id}", status_code=204)
async def delete_watchlist_entry(
    watchlist_id: str,
    user: AdminUser,
    watchlist_repo: WatchlistRepo,
    audit_repo: AuditRepo,
):
    """Deactivate an entry. Requires admin role."""
    entry = await _get_or_404(watchlist_repo, watchlist_id)
    entry.is_active = False
    entry.updated_at = datetime.utcnow()
    entry.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.DELETE,
        entity_type="Watchlist",
        entity_id=entry.id,
        old_values=_snapshot(entry),
    )


@router.get("/{watchlist_id}/history", response_model=list[WatchlistHistoryResponse])
async def watchlist_history(watchlist_id: str, user: AnalystUser, watchlist_repo: WatchlistRepo):
    """Risk level changes, newest first."""
    entry = await _get_or_404(watchlist_repo, watchlist_id)
    return [
        WatchlistHistoryResponse(
            id=h.id,
            old_risk_level=h.old_risk_level,
            new_risk_level=h.new_risk_level,
            changed_by_user_id=h.changed_by_user_id,
            changed_at=h.changed_at,
            comment=h.comment,
        )
        for h in await watchlist_repo.history(entry.id)
    ]
