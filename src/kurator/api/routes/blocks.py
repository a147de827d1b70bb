"""
Block API routes.

Blocks are managed by admins. Curators see the blocks they are assigned
to through /my.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from kurator.api.deps import AdminUser, AuditRepo, BlockRepo, Scope, User, UserRepo
from kurator.api.errors import not_found, require_id
from kurator.db.orm import AuditActionType, BlockStatus, CuratorType
from kurator.ids import RecordId
from kurator.security.auth import UserRole

logger = logging.getLogger(__name__)

router = APIRouter()


class BlockCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=20, pattern=r"^[A-Za-z0-9_]+$")
    description: Optional[str] = None


class BlockUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[BlockStatus] = None


class CuratorAssignmentRequest(BaseModel):
    user_id: RecordId
    curator_type: CuratorType = CuratorType.PRIMARY


class CuratorAssignmentResponse(BaseModel):
    id: int
    user_id: int
    login: str
    curator_type: str
    assigned_at: datetime


class BlockResponse(BaseModel):
    id: int
    name: str
    code: str
    description: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime
    curators: list[CuratorAssignmentResponse] = []


async def _to_response(block, block_repo) -> BlockResponse:
    assignments = await block_repo.assignments_for_block(block.id)
    return BlockResponse(
        id=block.id,
        name=block.name,
        code=block.code,
        description=block.description,
        status=block.status.value,
        created_at=block.created_at,
        updated_at=block.updated_at,
        curators=[
            CuratorAssignmentResponse(
                id=a.id,
                user_id=u.id,
                login=u.login,
                curator_type=a.curator_type.value,
                assigned_at=a.assigned_at,
            )
            for a, u in assignments
        ],
    )


async def _get_or_404(block_repo, block_id: str):
    block = await block_repo.get_by_id(require_id(block_id, "Block"))
    if block is None:
        raise not_found("Block")
    return block


@router.get("", response_model=list[BlockResponse])
async def list_blocks(user: AdminUser, block_repo: BlockRepo, status: Optional[BlockStatus] = None):
    """All blocks. Requires admin role."""
    blocks = await block_repo.list_blocks(status=status)
    return [await _to_response(b, block_repo) for b in blocks]


@router.get("/my", response_model=list[BlockResponse])
async def my_blocks(user: User, scope: Scope, block_repo: BlockRepo):
    """Active blocks within the caller's scope."""
    blocks = await block_repo.list_blocks(scope=scope, status=BlockStatus.ACTIVE)
    return [await _to_response(b, block_repo) for b in blocks]


@router.get("/{block_id}", response_model=BlockResponse)
async def get_block(block_id: str, user: AdminUser, block_repo: BlockRepo):
    block = await _get_or_404(block_repo, block_id)
    return await _to_response(block, block_repo)


@router.post("", response_model=BlockResponse, status_code=201)
async def create_block(data: BlockCreate, user: AdminUser, block_repo: BlockRepo, audit_repo: AuditRepo):
    """Create a block. Codes are unique."""
    if await block_repo.get_by_code(data.code):
        raise HTTPException(status_code=400, detail="Block code already exists")

    block = await block_repo.create(name=data.name, code=data.code, description=data.description)

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="Block",
        entity_id=block.id,
        new_values={"name": block.name, "code": block.code},
    )
    logger.info(f"Block {block.code} created by user {user.id}")

    return await _to_response(block, block_repo)


@router.put("/{block_id}", response_model=BlockResponse)
async def update_block(
    block_id: str,
    data: BlockUpdate,
    user: AdminUser,
    block_repo: BlockRepo,
    audit_repo: AuditRepo,
):
    block = await _get_or_404(block_repo, block_id)
    old_values = {"name": block.name, "status": block.status.value}

    if data.name is not None:
        block.name = data.name
    if data.description is not None:
        block.description = data.description
    if data.status is not None:
        block.status = data.status
    block.updated_at = datetime.utcnow()

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.UPDATE,
        entity_type="Block",
        entity_id=block.id,
        old_values=old_values,
        new_values={"name": block.name, "status": block.status.value},
    )

    return await _to_response(block, block_repo)


@router.put("/{block_id}/archive", response_model=BlockResponse)
async def archive_block(block_id: str, user: AdminUser, block_repo: BlockRepo, audit_repo: AuditRepo):
    """Archive a block. Its contacts stay in place but drop out of dashboards."""
    block = await _get_or_404(block_repo, block_id)
    old_status = block.status.value
    block.status = BlockStatus.ARCHIVED
    block.updated_at = datetime.utcnow()

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.STATUS_CHANGE,
        entity_type="Block",
        entity_id=block.id,
        old_values={"status": old_status},
        new_values={"status": block.status.value},
    )

    return await _to_response(block, block_repo)


@router.post("/{block_id}/curators", response_model=BlockResponse, status_code=201)
async def assign_curator(
    block_id: str,
    data: CuratorAssignmentRequest,
    user: AdminUser,
    block_repo: BlockRepo,
    user_repo: UserRepo,
    audit_repo: AuditRepo,
):
    """
    Assign a curator to a block.

    A user may be primary and backup curator of the same block, but cannot
    hold the same kind of assignment twice.
    """
    block = await _get_or_404(block_repo, block_id)

    curator = await user_repo.get_by_id(data.user_id)
    if curator is None:
        raise HTTPException(status_code=400, detail="User not found")
    if curator.role != UserRole.CURATOR:
        raise HTTPException(status_code=400, detail="Only curators can be assigned to blocks")

    if await block_repo.find_assignment(block.id, curator.id, data.curator_type):
        raise HTTPException(status_code=400, detail="Curator already assigned with this type")

    assignment = await block_repo.assign(
        block_id=block.id,
        user_id=curator.id,
        curator_type=data.curator_type,
        assigned_by=user.id,
    )

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.CREATE,
        entity_type="BlockCurator",
        entity_id=assignment.id,
        new_values={
            "block_id": block.id,
            "user_id": curator.id,
            "curator_type": data.curator_type.value,
        },
    )

    return await _to_response(block, block_repo)


@router.delete("/{block_id}/curators/{assignment_id}", status_code=204)
async def remove_curator(
    block_id: str,
    assignment_id: str,
    user: AdminUser,
    block_repo: BlockRepo,
    audit_repo: AuditRepo,
):
    """Remove a curator assignment. Takes effect on the curator's next request."""
    block = await _get_or_404(block_repo, block_id)
    assignment = await block_repo.get_assignment(require_id(assignment_id, "Assignment"))
    if assignment is None or assignment.block_id != block.id:
        raise not_found("Assignment")

    old_values = {
        "block_id": assignment.block_id,
        "user_id": assignment.user_id,
        "curator_type": assignment.curator_type.value,
    }
    removed_id = assignment.id
    await block_repo.remove_assignment(assignment)

    await audit_repo.record(
        user_id=user.id,
        action=AuditActionType.DELETE,
        entity_type="BlockCurator",
        entity_id=removed_id,
        old_values=old_values,
    )
