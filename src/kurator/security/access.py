"""
Block-level access control for Kurator.

Contacts, interactions and everything hanging off them belong to a block.
A curator may only see and change records in blocks they are assigned to
(as primary or backup curator). Admins are not restricted. Threat analysts
work on the watchlist, which is not block-scoped, and have no access to
block-scoped records at all.

The resolver is chosen once per request from the principal's role and the
assignment rows already loaded for that request. It performs no I/O.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Protocol, TypeVar, Union

from sqlalchemy import false
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from kurator.security.auth import Principal, UserRole

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _AllBlocks:
    """Sentinel for 'every block, no filter applied'."""

    def __contains__(self, block_id: object) -> bool:
        return True

    def __repr__(self) -> str:
        return "ALL_BLOCKS"


ALL_BLOCKS = _AllBlocks()

BlockScope = Union[_AllBlocks, frozenset[int]]


class AccessDecision(str, Enum):
    """Outcome of a single-entity access check."""
    GRANTED = "granted"
    DENIED = "denied"        # entity exists but lies outside the principal's blocks
    NOT_FOUND = "not_found"  # entity does not exist


class BlockAssignmentLike(Protocol):
    user_id: int
    block_id: int


class AccessScopeResolver(ABC):
    """Decides which blocks a principal may act on."""

    def __init__(self, principal: Principal):
        self.principal = principal

    @abstractmethod
    def accessible_block_ids(self) -> BlockScope:
        """Blocks the principal may act on, or ALL_BLOCKS for no restriction."""

    @abstractmethod
    def filter_query(self, stmt: Select, block_column: ColumnElement) -> Select:
        """Narrow a query over block-scoped rows to the accessible blocks."""

    def can_access(self, block_id: Optional[int]) -> bool:
        if block_id is None:
            return False
        return block_id in self.accessible_block_ids()

    def decide(self, entity_block_id: Optional[int], exists: bool = True) -> AccessDecision:
        """
        Gate access to a single entity.

        Pass exists=False (or a None block id) when the lookup found nothing,
        so that a missing entity is reported as NOT_FOUND and never as DENIED.
        """
        if not exists or entity_block_id is None:
            return AccessDecision.NOT_FOUND
        if self.can_access(entity_block_id):
            return AccessDecision.GRANTED

        logger.warning(
            f"User {self.principal.id} ({self.principal.role.value}) denied access "
            f"to block {entity_block_id}"
        )
        return AccessDecision.DENIED

    def filter_items(self, items: Iterable[T], block_id_of: Callable[[T], Optional[int]]) -> list[T]:
        """In-memory counterpart of filter_query."""
        return [item for item in items if self.can_access(block_id_of(item))]


class AdminScope(AccessScopeResolver):
    """Admins see every block. Queries are returned without a WHERE clause."""

    def accessible_block_ids(self) -> BlockScope:
        return ALL_BLOCKS

    def can_access(self, block_id: Optional[int]) -> bool:
        return block_id is not None

    def filter_query(self, stmt: Select, block_column: ColumnElement) -> Select:
        return stmt


class CuratorScope(AccessScopeResolver):
    """Curators see the union of their primary and backup block assignments."""

    def __init__(self, principal: Principal, block_ids: Iterable[int]):
        super().__init__(principal)
        self._block_ids = frozenset(block_ids)

    def accessible_block_ids(self) -> BlockScope:
        return self._block_ids

    def filter_query(self, stmt: Select, block_column: ColumnElement) -> Select:
        if not self._block_ids:
            return stmt.where(false())
        return stmt.where(block_column.in_(sorted(self._block_ids)))


class NoBlockScope(AccessScopeResolver):
    """Roles without block-scoped access (threat analysts)."""

    def accessible_block_ids(self) -> BlockScope:
        return frozenset()

    def filter_query(self, stmt: Select, block_column: ColumnElement) -> Select:
        return stmt.where(false())


def resolver_for(
    principal: Principal,
    assignments: Iterable[BlockAssignmentLike] = (),
) -> AccessScopeResolver:
    """
    Select the resolver for a principal.

    Args:
        principal: The authenticated principal
        assignments: Block assignment rows already loaded for this request.
            Rows belonging to other users are ignored.

    Returns:
        The resolver for the principal's role
    """
    if principal.role == UserRole.ADMIN:
        return AdminScope(principal)
    if principal.role == UserRole.CURATOR:
        return CuratorScope(
            principal,
            (a.block_id for a in assignments if a.user_id == principal.id),
        )
    return NoBlockScope(principal)


def accessible_block_ids(
    principal: Principal, assignments: Iterable[BlockAssignmentLike] = ()
) -> BlockScope:
    return resolver_for(principal, assignments).accessible_block_ids()


def can_access(
    principal: Principal,
    entity_block_id: Optional[int],
    assignments: Iterable[BlockAssignmentLike] = (),
) -> bool:
    return resolver_for(principal, assignments).can_access(entity_block_id)


def filter_query(
    principal: Principal,
    stmt: Select,
    block_column: Any,
    assignments: Iterable[BlockAssignmentLike] = (),
) -> Select:
    return resolver_for(principal, assignments).filter_query(stmt, block_column)
