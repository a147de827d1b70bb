"""
Contact API routes.

Contacts are block-scoped: curators work only with contacts in blocks
they are assigned to, admins with all of them. Names and notes are
encrypted at rest and decrypted only while building responses.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from kurator.api.deps import (
    AdminUser,
    AuditRepo,
    BlockRepo,
    ContactRepo,
    CuratorUser,
    Encryption,
    InteractionRepo,
    Page,
    Scope,
)
from kurator.api.errors import not_found, raise_for_access, require_id
from kurator.db.orm import AuditActionType, Contact
from kurator.ids import MAX_ID, RecordId
from kurator.security.access import AccessDecision

logger = logging.getLogger(__name__)

router = APIRouter()

RECENT_INTERACTIONS = 10


# Models
class ContactCreate(BaseModel):
    block_id: RecordId
    full_name: str = Field(min_length=1, max_length=500)
    organization_id: Optional[RecordId] = None
    position: Optional[str] = Field(default=None, max_length=500)
    influence_status_id: Optional[RecordId] = None
    influence_type_id: Optional[RecordId] = None
    usefulness_description: Optional[str] = None
    communication_channel_id: Optional[RecordId] = None
    contact_source_id: Optional[RecordId] = None
    next_touch_date: Optional[datetime] = None
    notes: Optional[str] = None


class ContactUpdate(BaseModel):
    """Partial update. Only fields present in the request body are applied."""

    full_name: Optional[str] = Field(default=None, min_length=1, max_length=500)
    organization_id: Optional[RecordId] = None
    position: Optional[str] = Field(default=None, max_length=500)
    influence_status_id: Optional[RecordId] = None
    influence_type_id: Optional[RecordId] = None
    usefulness_description: Optional[str] = None
    communication_channel_id: Optional[RecordId] = None
    contact_source_id: Optional[RecordId] = None
    next_touch_date: Optional[datetime] = None
    notes: Optional[str] = None


class ContactListItem(BaseModel):
    id: int
    contact_id: str
    full_name: Optional[str] = None
    block_id: int
    block_code: Optional[str] = None
    organization_id: Optional[int] = None
    position: Optional[str] = None
    influence_status_id: Optional[int] = None
    influence_type_id: Optional[int] = None
    last_interaction_date: Optional[datetime] = None
    next_touch_date: Optional[datetime] = None
    responsible_curator_id: int
    updated_at: datetime
    is_overdue: bool = False


class PaginatedContactResponse(BaseModel):
    items: list[ContactListItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class InteractionSummary(BaseModel):
    id: int
    interaction_date: datetime
    interaction_type_id: Optional[int] = None
    result_id: Optional[int] = None
    curator_id: int
    comment: Optional[str] = None


class StatusHistoryEntry(BaseModel):
    id: int
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    changed_by_user_id: int
    changed_at: datetime


class ContactDetail(ContactListItem):
    usefulness_description: Optional[str] = None
    communication_channel_id: Optional[int] = None
    contact_source_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_by: Optional[int] = None
    interactions: list[InteractionSummary] = []
    status_history: list[StatusHistoryEntry] = []


def _list_item(contact: Contact, encryption, block_codes: dict[int, str]) -> ContactListItem:
    return ContactListItem(
        id=contact.id,
        contact_id=contact.contact_id,
        full_name=encryption.decrypt(contact.full_name_encrypted),
        block_id=contact.block_id,
        block_code=block_codes.get(contact.block_id),
        organization_id=contact.organization_id,
        position=contact.position,
        influence_status_id=contact.influence_status_id,
        influence_type_id=contact.influence_type_id,
        last_interaction_date=contact.last_interaction_date,
        next_touch_date=contact.next_touch_date,
        responsible_curator_id=contact.responsible_curator_id,
        updated_at=contact.updated_at,
        is_overdue=_is_overdue(contact),
    )


def _is_overdue(contact: Contact, now: Optional[datetime] = None) -> bool:
    if contact.next_touch_date is None:
        return False
    return contact.next_touch_date < (now or datetime.utcnow())


def _history_entry(entry) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        id=entry.id,
        previous_status=entry.previous_status,
        new_status=entry.new_status,
        changed_by_user_id=entry.changed_by_user_id,
        changed_at=entry.changed_at,
    )


async def _block_codes(block_repo, scope) -> dict[int, str]:
    return {block.id: block.code for block in await block_repo.list_blocks(scope=scope)}


async def _detail(contact, encryption, scope, block_repo, contact_repo, interaction_repo) -> ContactDetail:
    block = await block_repo.get_by_id(contact.block_id)
    item = _list_item(contact, encryption, {block.id: block.code} if block else {})

    interactions = await interaction_repo.list_interactions(
        scope, limit=RECENT_INTERACTIONS, contact_id=contact.id
    )
    history = await contact_repo.status_history(contact.id)

    return ContactDetail(
        **item.model_dump(),
        usefulness_description=contact.usefulness_description,
        communication_channel_id=contact.communication_channel_id,
        contact_source_id=contact.contact_source_id,
        notes=encryption.decrypt(contact.notes_encrypted),
        created_at=contact.created_at,
        updated_by=contact.updated_by,
        interactions=[
            InteractionSummary(
                id=interaction.id,
                interaction_date=interaction.interaction_date,
                interaction_type_id=interaction.interaction_type_id,
                result_id=interaction.result_id,
                curator_id=interaction.curator_id,
                comment=encryption.decrypt(interaction.comment_encrypted),
            )
            for interaction, _ in interactions
        ],
        status_history=[_history_entry(h) for h in history],
    )


async def _get_scoped(contact_repo, scope, contact_id: str) -> Contact:
    """Load an active contact the principal may access: 404 when missing, 403 out of scope."""
    contact = await contact_repo.get_by_id(require_id(contact_id, "Contact"))
    exists = contact is not None and contact.is_active
    decision = scope.decide(contact.block_id if exists else None, exists=exists)
    raise_for_access(decision, "Contact")
    return contact


@router.get("", response_model=PaginatedContactResponse)
async def list_contacts(
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    block_repo: BlockRepo,
    encryption: Encryption,
    page: Page,
    block_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    search: Optional[str] = Query(None, max_length=200, description="Matches contact id or position"),
    influence_status_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    influence_type_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
    organization_id: Optional[int] = Query(None, gt=0, le=MAX_ID),
):
    """
    List contacts visible to the caller.

    Curators only ever see contacts of their own blocks; filtering by a
    foreign block returns an empty page.
    """
    filters = {
        "block_id": block_id,
        "search": search,
        "influence_status_id": influence_status_id,
        "influence_type_id": influence_type_id,
        "organization_id": organization_id,
    }
    contacts = await contact_repo.list_contacts(
        scope, limit=page.page_size, offset=page.offset, **filters
    )
    total = await contact_repo.count_contacts(scope, **filters)
    block_codes = await _block_codes(block_repo, scope)

    return PaginatedContactResponse(
        items=[_list_item(c, encryption, block_codes) for c in contacts],
        total=total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages(total),
    )


@router.get("/overdue", response_model=list[ContactListItem])
async def overdue_contacts(
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    block_repo: BlockRepo,
    encryption: Encryption,
):
    """Contacts whose next touch date has passed, most overdue first."""
    contacts = await contact_repo.list_overdue(scope)
    block_codes = await _block_codes(block_repo, scope)
    return [_list_item(c, encryption, block_codes) for c in contacts]


@router.get("/{contact_id}", response_model=ContactDetail)
async def get_contact(
    contact_id: str,
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    block_repo: BlockRepo,
    interaction_repo: InteractionRepo,
    encryption: Encryption,
):
    """Contact detail with recent interactions and status history."""
    contact = await _get_scoped(contact_repo, scope, contact_id)
    return await _detail(contact, encryption, scope, block_repo, contact_repo, interaction_repo)


@router.post("", response_model=ContactDetail, status_code=201)
async def create_contact(
    data: ContactCreate,
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    block_repo: BlockRepo,
    interaction_repo: InteractionRepo,
    audit_repo: AuditRepo,
    encryption: Encryption,
):
    """
    Create a contact in a block the caller may access.

    The contact id ({BLOCK_CODE}-{NNN}) is generated; the caller becomes the
    responsible curator.
    """
    if not scope.can_access(data.block_id):
        raise_for_access(AccessDecision.DENIED, "Block")

    block = await block_repo.get_by_id(data.block_id)
    if block is None:
        raise HTTPException(status_code=400, detail="Block not found")

    contact = Contact(
        contact_id=await contact_repo.next_contact_id(block),
        block_id=block.id,
        full_name_encrypted=encryption.encrypt(data.full_name),
        organization_id=data.organization_id,
        position=data.position,
        influence_status_id=data.influence_status_id,
        influence_type_id=data.influence_type_id,
        usefulness_description=data.usefulness_description,
        communication_channel_id=data.communication_channel_id,
        contact_source_id=data.contact_source_id,
        next_touch_date=data.next_touch_date,
        notes_encrypted=encryption.encrypt(data.notes),
        responsible_curator_id=user.id,
        is_active=True,
        updated_by=user.id,
    )
    await contact_repo.add(contact)

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="Contact",
        entity_id=contact.id,
        new_values={"contact_id": contact.contact_id, "block_id": contact.block_id},
    )
    logger.info(f"Contact {contact.contact_id} created by user {user.id}")

    return await _detail(contact, encryption, scope, block_repo, contact_repo, interaction_repo)


@router.put("/{contact_id}", response_model=ContactDetail)
async def update_contact(
    contact_id: str,
    data: ContactUpdate,
    user: CuratorUser,
    scope: Scope,
    contact_repo: ContactRepo,
    block_repo: BlockRepo,
    interaction_repo: InteractionRepo,
    audit_repo: AuditRepo,
    encryption: Encryption,
):
    """
    Update a contact.

    A change of influence status is appended to the status history and
    audited as a status change.
    """
    contact = await _get_scoped(contact_repo, scope, contact_id)
    fields = data.model_fields_set

    old_status = contact.influence_status_id
    old_values = {"position": contact.position, "influence_status_id": old_status}

    if "full_name" in fields and data.full_name is not None:
        contact.full_name_encrypted = encryption.encrypt(data.full_name)
    if "notes" in fields:
        contact.notes_encrypted = encryption.encrypt(data.notes)
    for name in (
        "organization_id",
        "position",
        "influence_type_id",
        "usefulness_description",
        "communication_channel_id",
        "contact_source_id",
        "next_touch_date",
    ):
        if name in fields:
            setattr(contact, name, getattr(data, name))

    status_changed = False
    if "influence_status_id" in fields:
        history = await contact_repo.record_status_change(contact, data.influence_status_id, user.id)
        status_changed = history is not None

    contact.updated_at = datetime.utcnow()
    contact.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.STATUS_CHANGE if status_changed else AuditActionType.UPDATE,
        entity_type="Contact",
        entity_id=contact.id,
        old_values=old_values,
        new_values={"position": contact.position, "influence_status_id": contact.influence_status_id},
    )

    return await _detail(contact, encryption, scope, block_repo, contact_repo, interaction_repo)


@router.delete("/{contact_id}", status_code=204)
async def delete_contact(contact_id: str, user: AdminUser, contact_repo: ContactRepo, audit_repo: AuditRepo):
    """Deactivate a contact. Requires admin role."""
    contact = await contact_repo.get_by_id(require_id(contact_id, "Contact"))
    if contact is None or not contact.is_active:
        raise not_found("Contact")

    contact.is_active = False
    contact.updated_at = datetime.utcnow()
    contact.updated_by = user.id

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.DELETE,
        entity_type="Contact",
        entity_id=contact.id,
        old_values={"contact_id": contact.contact_id, "block_id": contact.block_id},
    )


@router.get("/{contact_id}/status-history", response_model=list[StatusHistoryEntry])
async def contact_status_history(contact_id: str, user: CuratorUser, scope: Scope, contact_repo: ContactRepo):
    contact = await _get_scoped(contact_repo, scope, contact_id)
    return [_history_entry(h) for h in await contact_repo.status_history(contact.id)]
