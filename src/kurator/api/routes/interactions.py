"""
Interaction API routes.

Interactions have no block of their own; access is decided by the block
of the parent contact.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from kurator.api.deps import (
    AuditRepo,
    ContactRepo,
    CuratorUser,
    Encryption,
    InteractionRepo,
    Page,
    Scope,
    UserRepo,
)
from kurator.api.errors import raise_for_access, require_id
from kurator.db.orm import AuditActionType, Contact, Interaction
from kurator.ids import MAX_ID, RecordId, parse_id

logger = logging.getLogger(__name__)

router = APIRouter()


class InteractionCreate(BaseModel):
    contact_id: RecordId
    interaction_date: Optional[datetime] = None
    interaction_type_id: Optional[RecordId] = None
    result_id: Optional[RecordId] = None
    comment: Optional[str] = Field(default=None, max_length=10000)
    status_change_json: Optional[dict[str, Any]] = Field(
        default=None, description='e.g. {"newStatus": "2"}'
    )
    attachments_json: Optional[list[Any]] = None
    next_touch_date: Optional[datetime] = None


class InteractionUpdate(BaseModel):
    interaction_date: Optional[datetime] = None
    interaction_type_id: Optional[RecordId] = None
    result_id: Optional[RecordId] = None
    comment: Optional[str] = Field(default=None, max_length=10000)
    status_change_json: Optional[dict[str, Any]] = None
    next_touch_date: Optional[datetime] = None


class InteractionResponse(BaseModel):
    id: int
    contact_id: int
    contact_display_id: str
    contact_name: Optional[str] = None
    block_id: int
    interaction_date: datetime
    interaction_type_id: Optional[int] = None
    result_id: Optional[int] = None
    curator_id: int
    curator_login: Optional[str] = None
    comment: Optional[str] = None
    status_change_json: Optional[dict[str, Any]] = None
    attachments_json: Optional[list[Any]] = None
    next_touch_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    updated_by: Optional[int] = None


class PaginatedInteractionResponse(BaseModel):
    items: list[InteractionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def _requested_status(status_change: Optional[dict[str, Any]]) -> Optional[int]:
    """Influence status id carried in a status change payload, if any."""
    if not status_change:
        return None
    return parse_id(status_change.get("newStatus"))


def _to_response(interaction: Interaction, contact: Contact, encryption, logins: dict[int, str]) -> InteractionResponse:
    return InteractionResponse(
        id=interaction.id,
        contact_id=contact.id,
        contact_display_id=contact.contact_id,
        contact_name=encryption.decrypt(contact.full_name_encrypted),
        block_id=contact.block_id,
        interaction_date=interaction.interaction_date,
        interaction_type_id=interaction.interaction_type_id,
        result_id=interaction.result_id,
        curator_id=interaction.curator_id,
        curator_login=logins.get(interaction.curator_id),
        comment=encryption.decrypt(interaction.comment_encrypted),
        status_change_json=interaction.status_change_json,
        attachments_json=interaction.attachments_json,
        next_touch_date=interaction.next_touch_date,
        created_at=interaction.created_at,
        updated_at=interaction.updated_at,
        updated_by=interaction.updated_by,
    )


async def _respond(interaction, contact, encryption, user_repo) -> InteractionResponse:
    logins = await user_repo.logins_by_id({interaction.curator_id})
    return _to_response(interaction, contact, encryption, logins)


async def _get_scoped(interaction_repo, scope, interaction_id: str) -> tuple[Interaction, Contact]:
    row = await interaction_repo.get_with_contact(require_id(interaction_id, "Interaction"))
    exists = row is not None and row[0].is_active
    decision = scope.decide(row[1].block_id if exists else None, exists=exists)
    raise_for_access(decision, "Interaction")
    return row


async def _apply_status_change(
    contact: Contact,
    status_change: Optional[dict[str, Any]],
    user_id: int,
    contact_repo,
    audit_repo,
) -> None:
    new_status = _requested_status(status_change)
    if new_status is None:
        return

    old_status = contact.influence_status_id
    history = await contact_repo.record_status_change(contact, new_status, user_id)
    if history is None:
        return

    await audit_repo.record(
        user_id=user_id,
        action=AuditActionType.STATUS_CHANGE,
        entity_type="Contact",
        entity_id=contact.id,
        old_values={"influence_status_id": old_status},
        new_values={"influence_status_id": new_status},
    )


@router.get("", response_model=PaginatedInteractionResponse)
async def list_interactions(
    user: CuratorUser,
    scope: Scope,
    interaction_repo: InteractionRepo,
    user_repo: UserRepo,
    encryption: Encryption,
    page: Page,
    contact_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    block_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    interaction_type_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    result_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
):
    """List interactions visible to the caller, newest first."""
    filters = {
        "contact_id": contact_id,
        "block_id": block_id,
        "interaction_type_id": interaction_type_id,
        "result_id": result_id,
        "date_from": date_from,
        "date_to": date_to,
    }
    rows = await interaction_repo.list_interactions(scope, limit=page.page_size, offset=page.offset, **filters)
    total = await interaction_repo.count_interactions(scope, **filters)
    logins = await user_repo.logins_by_id({i.curator_id for i, _ in rows})

    return PaginatedInteractionResponse(
        items=[_to_response(i, c, encryption, logins) for i, c in rows],
        total=total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages(total),
    )


@router.get("/recent", response_model=list[InteractionResponse])
async def recent_interactions(
    user: CuratorUser,
    scope: Scope,
    interaction_repo: InteractionRepo,
    user_repo: UserRepo,
    encryption: Encryption,
    count: int = Query(5, ge=1, le=50),
):
    rows = await interaction_repo.list_interactions(scope, limit=count)
    logins = await user_repo.logins_by_id({i.curator_id for i, _ in rows})
    return [_to_response(i, c, encryption, logins) for i, c in rows]


@router.get("/{interaction_id}", response_model=InteractionResponse)
async def get_interaction(
    interaction_id: str,
    user: CuratorUser,
    scope: Scope,
    interaction_repo: InteractionRepo,
    user_repo: UserRepo,
    encryption: Encryption,
):
    interaction, contact = await _get_scoped(interaction_repo, scope, interaction_id)
    return await _respond(interaction, contact, encryption, user_repo)


@router.post("", response_model=InteractionResponse, status_code=201)
async def create_interaction(
    data: InteractionCreate,
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    interaction_repo: InteractionRepo,
    user_repo: UserRepo,
    audit_repo: AuditRepo,
    encryption: Encryption,
):
    """
    Record an interaction with a contact.

    Updates the contact's last interaction date, its next touch date when
    one is given, and its influence status when the payload carries
    {"newStatus": ...}.
    """
    contact = await contact_repo.get_by_id(data.contact_id)
    if contact is None or not contact.is_active:
        raise HTTPException(status_code=400, detail="Contact not found")
    raise_for_access(scope.decide(contact.block_id), "Contact")

    now = datetime.utcnow()
    interaction = Interaction(
        contact_id=contact.id,
        interaction_date=data.interaction_date or now,
        interaction_type_id=data.interaction_type_id,
        curator_id=user.id,
        result_id=data.result_id,
        comment_encrypted=encryption.encrypt(data.comment),
        status_change_json=data.status_change_json,
        attachments_json=data.attachments_json,
        next_touch_date=data.next_touch_date,
        is_active=True,
        updated_by=user.id,
    )
    await interaction_repo.add(interaction)

    contact.last_interaction_date = interaction.interaction_date
    if data.next_touch_date is not None:
        contact.next_touch_date = data.next_touch_date
    contact.updated_at = now
    contact.updated_by = user.id

    await _apply_status_change(contact, data.status_change_json, user.id, contact_repo, audit_repo)

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="Interaction",
        entity_id=interaction.id,
        new_values={"contact_id": contact.contact_id, "interaction_type_id": data.interaction_type_id},
    )
    logger.info(f"Interaction created for contact {contact.contact_id} by user {user.id}")

    return await _respond(interaction, contact, encryption, user_repo)


@router.put("/{interaction_id}", response_model=InteractionResponse)
async def update_interaction(
    interaction_id: str,
    data: InteractionUpdate,
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    interaction_repo: InteractionRepo,
    user_repo: UserRepo,
    audit_repo: AuditRepo,
    encryption: Encryption,
):
    interaction, contact = await _get_scoped(interaction_repo, scope, interaction_id)
    fields = data.model_fields_set

    if data.interaction_date is not None:
        interaction.interaction_date = data.interaction_date
    if "interaction_type_id" in fields:
        interaction.interaction_type_id = data.interaction_type_id
    if "result_id" in fields:
        interaction.result_id = data.result_id
    if "comment" in fields:
        interaction.comment_encrypted = encryption.encrypt(data.comment)
    if "status_change_json" in fields:
        interaction.status_change_json = data.status_change_json
    if "next_touch_date" in fields:
        interaction.next_touch_date = data.next_touch_date
        if data.next_touch_date is not None:
            contact.next_touch_date = data.next_touch_date

    now = datetime.utcnow()
    interaction.updated_at = now
    interaction.updated_by = user.id
    contact.updated_at = now
    contact.updated_by = user.id

    await _apply_status_change(contact, data.status_change_json, user.id, contact_repo, audit_repo)

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="Interaction",
        entity_id=interaction.id,
        new_values={"contact_id": contact.contact_id, "interaction_type_id": interaction.interaction_type_id},
    )

    return await _respond(interaction, contact, encryption, user_repo)


@router.delete("/{interaction_id}", status_code=204)
async def delete_interaction(
    interaction_id: str,
    user: CuratorUser,
    scope: Scope,
    interaction_repo: InteractionRepo,
    audit_repo: AuditRepo,
):
    """Deactivate an interaction."""
    interaction, contact = await _get_scoped(interaction_repo, scope, interaction_id)

    interaction.is_active = False
    interaction.updated_at = datetime.utcnow()
    interaction.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.DELETE,
        entity_type="Interaction",
        entity_id=interaction.id,
        old_values={"contact_id": contact.contact_id},
    )
    logger.info(f"Interaction {interaction.id} deactivated by user {user.id}")
