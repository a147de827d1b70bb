"""
Database repositories for data access layer.

Provides async CRUD operations for all entity types. Repositories flush but
never commit: the request-scoped session commits once the handler succeeds.

Block-scoped reads take the request's AccessScopeResolver and let it narrow
the query, so curators never load rows outside their blocks.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from kurator.db.orm import (
    FAQ,
    AuditActionType,
    AuditLog,
    Block,
    BlockCurator,
    BlockStatus,
    Contact,
    CuratorType,
    InfluenceStatusHistory,
    Interaction,
    MonitoringFrequency,
    ReferenceValue,
    RiskLevel,
    User,
    Watchlist,
    WatchlistHistory,
)
from kurator.security.access import AccessScopeResolver
from kurator.security.auth import UserRole, hash_password

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for User CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        result = await self.session.execute(
            select(User).where(User.id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_login(self, login: str) -> Optional[User]:
        """Get user by login (case-sensitive)."""
        result = await self.session.execute(
            select(User).where(User.login == login)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        login: str,
        password: str,
        role: UserRole,
        public_key: Optional[str] = None,
    ) -> User:
        """Create a new user. New users must enroll in MFA on first login."""
        user = User(
            login=login,
            password_hash=hash_password(password),
            role=role,
            public_key=public_key,
            is_first_login=True,
            mfa_enabled=False,
            is_active=True,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    def _conditions(self, role: Optional[UserRole], is_active: Optional[bool]) -> list:
        conditions = []
        if role is not None:
            conditions.append(User.role == role)
        if is_active is not None:
            conditions.append(User.is_active == is_active)
        return conditions

    async def list_users(
        self,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[User]:
        """List users with filtering."""
        query = select(User)
        conditions = self._conditions(role, is_active)
        if conditions:
            query = query.where(and_(*conditions))

        query = query.order_by(User.login).limit(limit).offset(offset)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_users(
        self,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
    ) -> int:
        """Count users with filtering."""
        query = select(func.count(User.id))
        conditions = self._conditions(role, is_active)
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.session.execute(query)
        return result.scalar_one()

    async def count_by_role(self) -> dict[str, int]:
        result = await self.session.execute(
            select(User.role, func.count(User.id)).group_by(User.role)
        )
        return {role.value: count for role, count in result.all()}

    async def count_logged_in_since(self, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(User.id)).where(User.last_login_at >= since)
        )
        return result.scalar_one()

    async def logins_by_id(self, user_ids: set[int]) -> dict[int, str]:
        if not user_ids:
            return {}
        result = await self.session.execute(
            select(User.id, User.login).where(User.id.in_(sorted(user_ids)))
        )
        return {user_id: login for user_id, login in result.all()}

    async def list_active_curators(self) -> list[User]:
        result = await self.session.execute(
            select(User)
            .where(User.role == UserRole.CURATOR, User.is_active.is_(True))
            .order_by(User.login)
        )
        return list(result.scalars().all())

    async def set_password(self, user: User, password: str) -> None:
        user.password_hash = hash_password(password)
        await self.session.flush()


class BlockRepository:
    """Repository for blocks and curator assignments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, block_id: int) -> Optional[Block]:
        """Get block by ID."""
        result = await self.session.execute(
            select(Block).where(Block.id == block_id)
        )
        return result.scalar_one_or_none()

    async def get_by_code(self, code: str) -> Optional[Block]:
        result = await self.session.execute(
            select(Block).where(Block.code == code)
        )
        return result.scalar_one_or_none()

    async def list_blocks(
        self,
        scope: Optional[AccessScopeResolver] = None,
        status: Optional[BlockStatus] = None,
    ) -> list[Block]:
        """List blocks, optionally narrowed to a principal's scope."""
        query = select(Block)
        if status is not None:
            query = query.where(Block.status == status)
        if scope is not None:
            query = scope.filter_query(query, Block.id)

        result = await self.session.execute(query.order_by(Block.name))
        return list(result.scalars().all())

    async def create(self, name: str, code: str, description: Optional[str] = None) -> Block:
        block = Block(name=name, code=code, description=description, status=BlockStatus.ACTIVE)
        self.session.add(block)
        await self.session.flush()
        return block

    async def assignments_for_user(self, user_id: int) -> list[BlockCurator]:
        """All block assignments of a user (primary and backup)."""
        result = await self.session.execute(
            select(BlockCurator).where(BlockCurator.user_id == user_id)
        )
        return list(result.scalars().all())

    async def assignments_for_block(self, block_id: int) -> list[tuple[BlockCurator, User]]:
        result = await self.session.execute(
            select(BlockCurator, User)
            .join(User, User.id == BlockCurator.user_id)
            .where(BlockCurator.block_id == block_id)
            .order_by(BlockCurator.curator_type, User.login)
        )
        return [(assignment, user) for assignment, user in result.all()]

    async def get_assignment(self, assignment_id: int) -> Optional[BlockCurator]:
        result = await self.session.execute(
            select(BlockCurator).where(BlockCurator.id == assignment_id)
        )
        return result.scalar_one_or_none()

    async def find_assignment(
        self, block_id: int, user_id: int, curator_type: CuratorType
    ) -> Optional[BlockCurator]:
        result = await self.session.execute(
            select(BlockCurator).where(
                and_(
                    BlockCurator.block_id == block_id,
                    BlockCurator.user_id == user_id,
                    BlockCurator.curator_type == curator_type,
                )
            )
        )
        return result.scalar_one_or_none()

    async def assign(
        self,
        block_id: int,
        user_id: int,
        curator_type: CuratorType,
        assigned_by: int,
    ) -> BlockCurator:
        assignment = BlockCurator(
            block_id=block_id,
            user_id=user_id,
            curator_type=curator_type,
            assigned_by=assigned_by,
        )
        self.session.add(assignment)
        await self.session.flush()

        logger.info(
            f"User {assigned_by} assigned user {user_id} to block {block_id} "
            f"as {curator_type.value}"
        )
        return assignment

    async def remove_assignment(self, assignment: BlockCurator) -> None:
        await self.session.delete(assignment)
        await self.session.flush()

    async def count_assignments_for_user(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count(BlockCurator.id)).where(BlockCurator.user_id == user_id)
        )
        return result.scalar_one()

    async def count_active(self) -> int:
        result = await self.session.execute(
            select(func.count(Block.id)).where(Block.status == BlockStatus.ACTIVE)
        )
        return result.scalar_one()


class ContactRepository:
    """Repository for Contact CRUD operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, contact_id: int) -> Optional[Contact]:
        """Get contact by ID (active or not)."""
        result = await self.session.execute(
            select(Contact).where(Contact.id == contact_id)
        )
        return result.scalar_one_or_none()

    def _filtered(
        self,
        query,
        scope: AccessScopeResolver,
        block_id: Optional[int] = None,
        search: Optional[str] = None,
        influence_status_id: Optional[int] = None,
        influence_type_id: Optional[int] = None,
        organization_id: Optional[int] = None,
    ):
        query = scope.filter_query(query.where(Contact.is_active.is_(True)), Contact.block_id)

        if block_id is not None:
            query = query.where(Contact.block_id == block_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(Contact.contact_id.ilike(pattern), Contact.position.ilike(pattern))
            )
        if influence_status_id is not None:
            query = query.where(Contact.influence_status_id == influence_status_id)
        if influence_type_id is not None:
            query = query.where(Contact.influence_type_id == influence_type_id)
        if organization_id is not None:
            query = query.where(Contact.organization_id == organization_id)
        return query

    async def list_contacts(
        self,
        scope: AccessScopeResolver,
        limit: int = 50,
        offset: int = 0,
        **filters: Any,
    ) -> list[Contact]:
        """List active contacts visible to the principal, newest changes first."""
        query = self._filtered(select(Contact), scope, **filters)
        query = query.order_by(Contact.updated_at.desc(), Contact.id.desc()).limit(limit).offset(offset)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_contacts(self, scope: AccessScopeResolver, **filters: Any) -> int:
        query = self._filtered(select(func.count(Contact.id)), scope, **filters)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_overdue(
        self,
        scope: AccessScopeResolver,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        active_blocks_only: bool = False,
    ) -> list[Contact]:
        """Active contacts whose next touch date has passed, most overdue first."""
        now = now or datetime.utcnow()
        query = select(Contact).where(
            Contact.is_active.is_(True),
            Contact.next_touch_date.is_not(None),
            Contact.next_touch_date < now,
        )
        if active_blocks_only:
            query = query.join(Block, Block.id == Contact.block_id).where(
                Block.status == BlockStatus.ACTIVE
            )
        query = scope.filter_query(query, Contact.block_id).order_by(Contact.next_touch_date)
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def next_contact_id(self, block: Block) -> str:
        """
        Next human-readable contact id for a block: {CODE}-{NNN}.

        One past the highest numeric suffix used in the block, inactive
        contacts included.
        """
        result = await self.session.execute(
            select(Contact.contact_id).where(Contact.block_id == block.id)
        )
        highest = 0
        for (existing,) in result.all():
            suffix = existing.rsplit("-", 1)[-1]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{block.code}-{highest + 1:03d}"

    async def add(self, contact: Contact) -> Contact:
        self.session.add(contact)
        await self.session.flush()
        return contact

    async def record_status_change(
        self,
        contact: Contact,
        new_status: Optional[int],
        changed_by: int,
    ) -> Optional[InfluenceStatusHistory]:
        """Set the influence status, appending history if it changed."""
        if new_status == contact.influence_status_id:
            return None

        entry = InfluenceStatusHistory(
            contact_id=contact.id,
            previous_status=str(contact.influence_status_id) if contact.influence_status_id is not None else None,
            new_status=str(new_status) if new_status is not None else None,
            changed_by_user_id=changed_by,
        )
        contact.influence_status_id = new_status
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def status_history(self, contact_id: int) -> list[InfluenceStatusHistory]:
        result = await self.session.execute(
            select(InfluenceStatusHistory)
            .where(InfluenceStatusHistory.contact_id == contact_id)
            .order_by(InfluenceStatusHistory.changed_at.desc(), InfluenceStatusHistory.id.desc())
        )
        return list(result.scalars().all())

    async def status_transitions(self, since: datetime, limit: int = 10) -> dict[str, int]:
        """Most frequent "previous->new" status transitions since a date."""
        result = await self.session.execute(
            select(
                InfluenceStatusHistory.previous_status,
                InfluenceStatusHistory.new_status,
                func.count(InfluenceStatusHistory.id),
            )
            .where(InfluenceStatusHistory.changed_at >= since)
            .group_by(InfluenceStatusHistory.previous_status, InfluenceStatusHistory.new_status)
            .order_by(func.count(InfluenceStatusHistory.id).desc())
            .limit(limit)
        )
        return {
            f"{previous or 'null'}->{new or 'null'}": count
            for previous, new, count in result.all()
        }

    async def count_grouped(self, scope: AccessScopeResolver, column) -> dict[str, int]:
        """
        Active contacts in active blocks, counted per value of a column.

        Rows where the column is NULL are left out. Keys are stringified.
        """
        query = (
            select(column, func.count(Contact.id))
            .join(Block, Block.id == Contact.block_id)
            .where(
                Contact.is_active.is_(True),
                Block.status == BlockStatus.ACTIVE,
                column.is_not(None),
            )
            .group_by(column)
        )
        result = await self.session.execute(scope.filter_query(query, Contact.block_id))
        return {str(key): count for key, count in result.all()}

    async def last_interaction_dates(self, scope: AccessScopeResolver) -> list[datetime]:
        query = (
            select(Contact.last_interaction_date)
            .join(Block, Block.id == Contact.block_id)
            .where(
                Contact.is_active.is_(True),
                Block.status == BlockStatus.ACTIVE,
                Contact.last_interaction_date.is_not(None),
            )
        )
        result = await self.session.execute(scope.filter_query(query, Contact.block_id))
        return list(result.scalars().all())

    async def count_in_active_blocks(
        self, scope: AccessScopeResolver, since: Optional[datetime] = None
    ) -> int:
        query = (
            select(func.count(Contact.id))
            .join(Block, Block.id == Contact.block_id)
            .where(Contact.is_active.is_(True), Block.status == BlockStatus.ACTIVE)
        )
        if since is not None:
            query = query.where(Contact.created_at >= since)
        result = await self.session.execute(scope.filter_query(query, Contact.block_id))
        return result.scalar_one()


class InteractionRepository:
    """Repository for interactions. Scoped through the parent contact's block."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_with_contact(self, interaction_id: int) -> Optional[tuple[Interaction, Contact]]:
        result = await self.session.execute(
            select(Interaction, Contact)
            .join(Contact, Contact.id == Interaction.contact_id)
            .where(Interaction.id == interaction_id)
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    def _filtered(
        self,
        query,
        scope: AccessScopeResolver,
        contact_id: Optional[int] = None,
        block_id: Optional[int] = None,
        interaction_type_id: Optional[int] = None,
        result_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ):
        query = query.join(Contact, Contact.id == Interaction.contact_id).where(
            Interaction.is_active.is_(True)
        )
        query = scope.filter_query(query, Contact.block_id)

        if contact_id is not None:
            query = query.where(Interaction.contact_id == contact_id)
        if block_id is not None:
            query = query.where(Contact.block_id == block_id)
        if interaction_type_id is not None:
            query = query.where(Interaction.interaction_type_id == interaction_type_id)
        if result_id is not None:
            query = query.where(Interaction.result_id == result_id)
        if date_from is not None:
            query = query.where(Interaction.interaction_date >= date_from)
        if date_to is not None:
            query = query.where(Interaction.interaction_date <= date_to)
        return query

    async def list_interactions(
        self,
        scope: AccessScopeResolver,
        limit: int = 50,
        offset: int = 0,
        **filters: Any,
    ) -> list[tuple[Interaction, Contact]]:
        query = self._filtered(select(Interaction, Contact), scope, **filters)
        query = query.order_by(Interaction.interaction_date.desc(), Interaction.id.desc())
        result = await self.session.execute(query.limit(limit).offset(offset))
        return [(interaction, contact) for interaction, contact in result.all()]

    async def count_interactions(self, scope: AccessScopeResolver, **filters: Any) -> int:
        query = self._filtered(select(func.count(Interaction.id)), scope, **filters)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def recent_in_active_blocks(
        self, scope: AccessScopeResolver, limit: int = 5
    ) -> list[tuple[Interaction, Contact]]:
        query = (
            select(Interaction, Contact)
            .join(Contact, Contact.id == Interaction.contact_id)
            .join(Block, Block.id == Contact.block_id)
            .where(Interaction.is_active.is_(True), Block.status == BlockStatus.ACTIVE)
        )
        query = scope.filter_query(query, Contact.block_id)
        query = query.order_by(Interaction.interaction_date.desc()).limit(limit)
        result = await self.session.execute(query)
        return [(interaction, contact) for interaction, contact in result.all()]

    async def count_in_active_blocks(
        self, scope: AccessScopeResolver, since: Optional[datetime] = None
    ) -> int:
        query = (
            select(func.count(Interaction.id))
            .join(Contact, Contact.id == Interaction.contact_id)
            .join(Block, Block.id == Contact.block_id)
            .where(Interaction.is_active.is_(True), Block.status == BlockStatus.ACTIVE)
        )
        if since is not None:
            query = query.where(Interaction.interaction_date >= since)
        result = await self.session.execute(scope.filter_query(query, Contact.block_id))
        return result.scalar_one()

    async def count_grouped(
        self, scope: AccessScopeResolver, column, since: Optional[datetime] = None
    ) -> dict[str, int]:
        """Active interactions in active blocks, counted per value of a column."""
        query = (
            select(column, func.count(Interaction.id))
            .join(Contact, Contact.id == Interaction.contact_id)
            .join(Block, Block.id == Contact.block_id)
            .join(User, User.id == Interaction.curator_id)
            .where(
                Interaction.is_active.is_(True),
                Block.status == BlockStatus.ACTIVE,
                column.is_not(None),
            )
            .group_by(column)
            .order_by(func.count(Interaction.id).desc())
        )
        if since is not None:
            query = query.where(Interaction.interaction_date >= since)
        result = await self.session.execute(scope.filter_query(query, Contact.block_id))
        return {str(key): count for key, count in result.all()}

    async def add(self, interaction: Interaction) -> Interaction:
        self.session.add(interaction)
        await self.session.flush()
        return interaction


class WatchlistRepository:
    """Repository for watchlist entries. Not block-scoped."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, watchlist_id: int) -> Optional[Watchlist]:
        result = await self.session.execute(
            select(Watchlist).where(Watchlist.id == watchlist_id)
        )
        return result.scalar_one_or_none()

    def _filtered(
        self,
        query,
        risk_level: Optional[RiskLevel] = None,
        risk_sphere_id: Optional[int] = None,
        monitoring_frequency: Optional[MonitoringFrequency] = None,
        search: Optional[str] = None,
    ):
        query = query.where(Watchlist.is_active.is_(True))
        if monitoring_frequency is not None:
            query = query.where(Watchlist.monitoring_frequency == monitoring_frequency)
        if risk_level is not None:
            query = query.where(Watchlist.risk_level == risk_level)
        if risk_sphere_id is not None:
            query = query.where(Watchlist.risk_sphere_id == risk_sphere_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(Watchlist.full_name.ilike(pattern), Watchlist.role_status.ilike(pattern))
            )
        return query

    async def list_entries(self, limit: int = 50, offset: int = 0, **filters: Any) -> list[Watchlist]:
        query = self._filtered(select(Watchlist), **filters)
        query = query.order_by(Watchlist.next_check_date, Watchlist.id)
        result = await self.session.execute(query.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def count_entries(self, **filters: Any) -> int:
        result = await self.session.execute(self._filtered(select(func.count(Watchlist.id)), **filters))
        return result.scalar_one()

    async def due_for_check(self, now: Optional[datetime] = None) -> list[Watchlist]:
        now = now or datetime.utcnow()
        result = await self.session.execute(
            select(Watchlist)
            .where(
                Watchlist.is_active.is_(True),
                Watchlist.next_check_date.is_not(None),
                Watchlist.next_check_date <= now,
            )
            .order_by(Watchlist.next_check_date)
        )
        return list(result.scalars().all())

    async def statistics(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or datetime.utcnow()
        total = await self.count_entries()
        due = len(await self.due_for_check(now))

        by_level = await self.session.execute(
            select(Watchlist.risk_level, func.count(Watchlist.id))
            .where(Watchlist.is_active.is_(True))
            .group_by(Watchlist.risk_level)
        )
        by_sphere = await self.session.execute(
            select(Watchlist.risk_sphere_id, func.count(Watchlist.id))
            .where(Watchlist.is_active.is_(True), Watchlist.risk_sphere_id.is_not(None))
            .group_by(Watchlist.risk_sphere_id)
        )
        return {
            "total": total,
            "requires_check": due,
            "by_risk_level": {level.value: count for level, count in by_level.all()},
            "by_risk_sphere": {str(sphere): count for sphere, count in by_sphere.all()},
        }

    async def add(self, entry: Watchlist) -> Watchlist:
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def record_risk_change(
        self,
        entry: Watchlist,
        new_level: RiskLevel,
        changed_by: int,
        comment: Optional[str] = None,
    ) -> Optional[WatchlistHistory]:
        """Set the risk level, appending history if it changed."""
        if new_level == entry.risk_level:
            return None

        history = WatchlistHistory(
            watchlist_id=entry.id,
            old_risk_level=entry.risk_level.value if entry.risk_level else None,
            new_risk_level=new_level.value,
            changed_by_user_id=changed_by,
            comment=comment,
        )
        entry.risk_level = new_level
        self.session.add(history)
        await self.session.flush()
        return history

    async def history(self, watchlist_id: int) -> list[WatchlistHistory]:
        result = await self.session.execute(
            select(WatchlistHistory)
            .where(WatchlistHistory.watchlist_id == watchlist_id)
            .order_by(WatchlistHistory.changed_at.desc(), WatchlistHistory.id.desc())
        )
        return list(result.scalars().all())


class ReferenceRepository:
    """Repository for reference values."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, reference_id: int) -> Optional[ReferenceValue]:
        result = await self.session.execute(
            select(ReferenceValue).where(ReferenceValue.id == reference_id)
        )
        return result.scalar_one_or_none()

    async def get_by_code(self, category: str, code: str) -> Optional[ReferenceValue]:
        result = await self.session.execute(
            select(ReferenceValue).where(
                ReferenceValue.category == category, ReferenceValue.code == code
            )
        )
        return result.scalar_one_or_none()

    async def list_values(
        self, category: Optional[str] = None, include_inactive: bool = False
    ) -> list[ReferenceValue]:
        query = select(ReferenceValue)
        if category:
            query = query.where(ReferenceValue.category == category)
        if not include_inactive:
            query = query.where(ReferenceValue.is_active.is_(True))
        query = query.order_by(ReferenceValue.category, ReferenceValue.sort_order, ReferenceValue.value)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def categories(self) -> list[str]:
        result = await self.session.execute(
            select(ReferenceValue.category).distinct().order_by(ReferenceValue.category)
        )
        return list(result.scalars().all())

    async def add(self, value: ReferenceValue) -> ReferenceValue:
        self.session.add(value)
        await self.session.flush()
        return value


class FAQRepository:
    """Repository for FAQ entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, faq_id: int) -> Optional[FAQ]:
        result = await self.session.execute(select(FAQ).where(FAQ.id == faq_id))
        return result.scalar_one_or_none()

    async def list_active(self) -> list[FAQ]:
        result = await self.session.execute(
            select(FAQ).where(FAQ.is_active.is_(True)).order_by(FAQ.sort_order, FAQ.id)
        )
        return list(result.scalars().all())

    async def add(self, faq: FAQ) -> FAQ:
        self.session.add(faq)
        await self.session.flush()
        return faq


class AuditLogRepository:
    """Repository for AuditLog operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        user_id: int,
        action: AuditActionType,
        entity_type: str,
        entity_id: Optional[Any] = None,
        old_values: Optional[dict] = None,
        new_values: Optional[dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        log = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            old_values=old_values,
            new_values=new_values,
            timestamp=timestamp or datetime.utcnow(),
        )
        self.session.add(log)
        await self.session.flush()
        return log

    def _filtered(
        self,
        query,
        user_id: Optional[int] = None,
        action: Optional[AuditActionType] = None,
        entity_type: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ):
        if user_id is not None:
            query = query.where(AuditLog.user_id == user_id)
        if action is not None:
            query = query.where(AuditLog.action == action)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if date_from is not None:
            query = query.where(AuditLog.timestamp >= date_from)
        if date_to is not None:
            query = query.where(AuditLog.timestamp <= date_to)
        return query

    async def list_logs(self, limit: int = 50, offset: int = 0, **filters: Any) -> list[AuditLog]:
        query = self._filtered(select(AuditLog), **filters)
        query = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        result = await self.session.execute(query.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def count_logs(self, **filters: Any) -> int:
        result = await self.session.execute(self._filtered(select(func.count(AuditLog.id)), **filters))
        return result.scalar_one()

    async def get_for_entity(self, entity_type: str, entity_id: Any, limit: int = 100) -> list[AuditLog]:
        """Get audit logs for a specific entity."""
        result = await self.session.execute(
            select(AuditLog)
            .where(
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == str(entity_id),
            )
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
