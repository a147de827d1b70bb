"""
Dashboard API routes.

Metrics only count active contacts and interactions in active blocks.
The curator dashboard is scoped like every other contact query, so an
admin calling it sees figures across all blocks.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from kurator.api.deps import (
    AdminUser,
    AuditRepo,
    BlockRepo,
    ContactRepo,
    CuratorUser,
    Encryption,
    InteractionRepo,
    Scope,
    UserRepo,
)
from kurator.db.orm import Block, Contact, Interaction, User

logger = logging.getLogger(__name__)

router = APIRouter()

MONTH = timedelta(days=30)
ATTENTION_LIMIT = 10
RECENT_LIMIT = 5


class RecentInteraction(BaseModel):
    id: int
    contact_id: int
    contact_display_id: str
    contact_name: Optional[str] = None
    interaction_date: datetime
    interaction_type_id: Optional[int] = None
    result_id: Optional[int] = None


class AttentionContact(BaseModel):
    id: int
    contact_id: str
    full_name: Optional[str] = None
    next_touch_date: datetime
    days_overdue: int
    influence_status_id: Optional[int] = None


class CuratorDashboard(BaseModel):
    total_contacts: int
    interactions_last_month: int
    average_interaction_interval: float
    overdue_contacts: int
    recent_interactions: list[RecentInteraction]
    contacts_requiring_attention: list[AttentionContact]
    contacts_by_influence_status: dict[str, int]
    interactions_by_type: dict[str, int]


class AuditSummary(BaseModel):
    id: int
    user_login: Optional[str] = None
    action: str
    entity_type: str
    timestamp: datetime


class AdminDashboard(BaseModel):
    total_contacts: int
    total_interactions: int
    total_blocks: int
    total_users: int
    new_contacts_last_month: int
    interactions_last_month: int
    contacts_by_block: dict[str, int]
    contacts_by_influence_status: dict[str, int]
    contacts_by_influence_type: dict[str, int]
    interactions_by_block: dict[str, int]
    top_curators_by_activity: dict[str, int]
    status_change_dynamics: dict[str, int]
    recent_audit_logs: list[AuditSummary]


def average_days_since(dates: list[datetime], now: datetime) -> float:
    """Mean number of days between each date and now; 0 for no dates."""
    if not dates:
        return 0.0
    return sum((now - d).total_seconds() for d in dates) / len(dates) / 86400


@router.get("/curator", response_model=CuratorDashboard)
async def curator_dashboard(
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    interaction_repo: InteractionRepo,
    encryption: Encryption,
):
    """Workload figures for the caller's blocks."""
    now = datetime.utcnow()
    month_ago = now - MONTH

    overdue = await contact_repo.list_overdue(scope, now=now, active_blocks_only=True)
    recent = await interaction_repo.recent_in_active_blocks(scope, limit=RECENT_LIMIT)

    dashboard = CuratorDashboard(
        total_contacts=await contact_repo.count_in_active_blocks(scope),
        interactions_last_month=await interaction_repo.count_in_active_blocks(scope, since=month_ago),
        average_interaction_interval=round(
            average_days_since(await contact_repo.last_interaction_dates(scope), now), 1
        ),
        overdue_contacts=len(overdue),
        recent_interactions=[
            RecentInteraction(
                id=interaction.id,
                contact_id=contact.id,
                contact_display_id=contact.contact_id,
                contact_name=encryption.decrypt(contact.full_name_encrypted),
                interaction_date=interaction.interaction_date,
                interaction_type_id=interaction.interaction_type_id,
                result_id=interaction.result_id,
            )
            for interaction, contact in recent
        ],
        contacts_requiring_attention=[
            AttentionContact(
                id=c.id,
                contact_id=c.contact_id,
                full_name=encryption.decrypt(c.full_name_encrypted),
                next_touch_date=c.next_touch_date,
                days_overdue=(now - c.next_touch_date).days,
                influence_status_id=c.influence_status_id,
            )
            for c in overdue[:ATTENTION_LIMIT]
        ],
        contacts_by_influence_status=await contact_repo.count_grouped(scope, Contact.influence_status_id),
        interactions_by_type=await interaction_repo.count_grouped(
            scope, Interaction.interaction_type_id, since=month_ago
        ),
    )

    logger.info(
        f"Curator dashboard for user {user.id}: {dashboard.total_contacts} contacts, "
        f"{dashboard.overdue_contacts} overdue"
    )
    return dashboard


@router.get("/admin", response_model=AdminDashboard)
async def admin_dashboard(
    user: AdminUser,
    scope: Scope,
    contact_repo: ContactRepo,
    interaction_repo: InteractionRepo,
    block_repo: BlockRepo,
    user_repo: UserRepo,
    audit_repo: AuditRepo,
):
    """System-wide totals. Requires admin role."""
    now = datetime.utcnow()
    month_ago = now - MONTH

    logs = await audit_repo.list_logs(limit=20)
    logins = await user_repo.logins_by_id({log.user_id for log in logs})

    return AdminDashboard(
        total_contacts=await contact_repo.count_in_active_blocks(scope),
        total_interactions=await interaction_repo.count_in_active_blocks(scope),
        total_blocks=await block_repo.count_active(),
        total_users=await user_repo.count_users(),
        new_contacts_last_month=await contact_repo.count_in_active_blocks(scope, since=month_ago),
        interactions_last_month=await interaction_repo.count_in_active_blocks(scope, since=month_ago),
        contacts_by_block=await contact_repo.count_grouped(scope, Block.name),
        contacts_by_influence_status=await contact_repo.count_grouped(scope, Contact.influence_status_id),
        contacts_by_influence_type=await contact_repo.count_grouped(scope, Contact.influence_type_id),
        interactions_by_block=await interaction_repo.count_grouped(scope, Block.name, since=month_ago),
        top_curators_by_activity=dict(
            list((await interaction_repo.count_grouped(scope, User.login, since=month_ago)).items())[:5]
        ),
        status_change_dynamics=await contact_repo.status_transitions(since=now - 3 * MONTH),
        recent_audit_logs=[
            AuditSummary(
                id=log.id,
                user_login=logins.get(log.user_id),
                action=log.action.value,
                entity_type=log.entity_type,
                timestamp=log.timestamp,
            )
            for log in logs
        ],
    )
