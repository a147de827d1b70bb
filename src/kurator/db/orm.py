"""
SQLAlchemy database models for Kurator.

Implements the curator domain model:
- Users with MFA state
- Blocks and their curator assignments (the access scope anchor)
- Contacts and interactions, scoped to a block
- Influence status history
- Watchlist of threat-relevant persons (not block-scoped)
- Reference values and FAQ entries
- Audit log

Security:
- Contact names, contact notes and interaction comments are stored as
  ciphertext produced by FieldEncryption; the *_encrypted columns never
  hold plaintext written by this application
- Records are deactivated (is_active=False) rather than deleted
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from kurator.security.auth import UserRole
from kurator.security.mfa import MfaState


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class BlockStatus(enum.Enum):
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class CuratorType(enum.Enum):
    PRIMARY = "Primary"
    BACKUP = "Backup"


class RiskLevel(enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class MonitoringFrequency(enum.Enum):
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    AD_HOC = "AdHoc"


class AuditActionType(enum.Enum):
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"
    STATUS_CHANGE = "StatusChange"
    LOGIN = "Login"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class User(Base):
    """
    User authentication and profile.

    MFA lifecycle: no secret (unset) -> secret issued, not confirmed
    (pending) -> first code verified (enabled).
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Credentials (login is case-sensitive)
    login: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, values_callable=_enum_values), default=UserRole.CURATOR
    )

    # MFA
    is_first_login: Mapped[bool] = mapped_column(Boolean, default=True)
    mfa_secret: Mapped[Optional[str]] = mapped_column(String(64))
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    public_key: Mapped[Optional[str]] = mapped_column(Text)

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    block_assignments: Mapped[list["BlockCurator"]] = relationship(
        "BlockCurator",
        back_populates="user",
        foreign_keys="BlockCurator.user_id",
    )

    @property
    def mfa_state(self) -> MfaState:
        if not self.mfa_secret:
            return MfaState.UNSET
        if self.mfa_enabled:
            return MfaState.ENABLED
        return MfaState.PENDING

    def record_successful_login(self) -> None:
        self.last_login_at = datetime.utcnow()


class Block(Base):
    """Organizational grouping of contacts. Anchors curator access scope."""

    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[BlockStatus] = mapped_column(
        SQLEnum(BlockStatus, values_callable=_enum_values), default=BlockStatus.ACTIVE
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    curators: Mapped[list["BlockCurator"]] = relationship("BlockCurator", back_populates="block")


class BlockCurator(Base):
    """
    Assignment of a user to a block.

    A user may hold a primary and a backup assignment to the same block,
    but never the same kind twice. Assignments do not expire; they are
    removed explicitly by an admin.
    """

    __tablename__ = "block_curators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    block_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("blocks.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    curator_type: Mapped[CuratorType] = mapped_column(
        SQLEnum(CuratorType, values_callable=_enum_values), nullable=False
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    assigned_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"))

    block: Mapped["Block"] = relationship("Block", back_populates="curators")
    user: Mapped["User"] = relationship(
        "User", back_populates="block_assignments", foreign_keys=[user_id]
    )

    __table_args__ = (
        UniqueConstraint("block_id", "user_id", "curator_type", name="uq_block_curator_kind"),
        Index("idx_block_curators_user", "user_id"),
    )


class Contact(Base):
    """A person of interest managed by the curators of a block."""

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    block_id: Mapped[int] = mapped_column(Integer, ForeignKey("blocks.id"), nullable=False)

    full_name_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    organization_id: Mapped[Optional[int]] = mapped_column(Integer)
    position: Mapped[Optional[str]] = mapped_column(String(500))

    influence_status_id: Mapped[Optional[int]] = mapped_column(Integer)
    influence_type_id: Mapped[Optional[int]] = mapped_column(Integer)
    usefulness_description: Mapped[Optional[str]] = mapped_column(Text)

    communication_channel_id: Mapped[Optional[int]] = mapped_column(Integer)
    contact_source_id: Mapped[Optional[int]] = mapped_column(Integer)

    last_interaction_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_touch_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    notes_encrypted: Mapped[Optional[str]] = mapped_column(Text)

    responsible_curator_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"))

    block: Mapped["Block"] = relationship("Block")

    __table_args__ = (
        Index("idx_contacts_block", "block_id"),
        Index("idx_contacts_next_touch", "next_touch_date"),
    )


class Interaction(Base):
    """A recorded touchpoint with a contact. Scoped through the contact's block."""

    __tablename__ = "interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    interaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    interaction_type_id: Mapped[Optional[int]] = mapped_column(Integer)
    curator_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    result_id: Mapped[Optional[int]] = mapped_column(Integer)

    comment_encrypted: Mapped[Optional[str]] = mapped_column(Text)
    status_change_json: Mapped[Optional[dict]] = mapped_column(JSON)
    attachments_json: Mapped[Optional[list]] = mapped_column(JSON)

    next_touch_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"))

    contact: Mapped["Contact"] = relationship("Contact")

    __table_args__ = (
        Index("idx_interactions_contact", "contact_id"),
        Index("idx_interactions_date", "interaction_date"),
    )


class InfluenceStatusHistory(Base):
    """Append-only record of a contact's influence status changes."""

    __tablename__ = "influence_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False
    )
    previous_status: Mapped[Optional[str]] = mapped_column(String(50))
    new_status: Mapped[Optional[str]] = mapped_column(String(50))
    changed_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Watchlist(Base):
    """
    Threat-relevant person under periodic review.

    Not block-scoped and not encrypted: visible to admins and threat analysts.
    """

    __tablename__ = "watchlist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(500), nullable=False)
    role_status: Mapped[Optional[str]] = mapped_column(String(500))
    risk_sphere_id: Mapped[Optional[int]] = mapped_column(Integer)
    threat_source: Mapped[Optional[str]] = mapped_column(Text)
    conflict_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    risk_level: Mapped[RiskLevel] = mapped_column(
        SQLEnum(RiskLevel, values_callable=_enum_values), default=RiskLevel.LOW
    )
    monitoring_frequency: Mapped[MonitoringFrequency] = mapped_column(
        SQLEnum(MonitoringFrequency, values_callable=_enum_values),
        default=MonitoringFrequency.MONTHLY,
    )
    last_check_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_check_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    dynamics_description: Mapped[Optional[str]] = mapped_column(Text)

    watch_owner_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"))

    __table_args__ = (
        Index("idx_watchlist_next_check", "next_check_date"),
    )


class WatchlistHistory(Base):
    """Risk level changes of a watchlist entry."""

    __tablename__ = "watchlist_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    watchlist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("watchlist.id", ondelete="CASCADE"), nullable=False
    )
    old_risk_level: Mapped[Optional[str]] = mapped_column(String(20))
    new_risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    comment: Mapped[Optional[str]] = mapped_column(Text)


class ReferenceValue(Base):
    """Dictionary entry (influence statuses, interaction types, ...)."""

    __tablename__ = "reference_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("category", "code", name="uq_reference_category_code"),
    )


class FAQ(Base):
    __tablename__ = "faqs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"))


class AuditLog(Base):
    """
    Compliance trail of mutating actions.

    Written by the API layer after access and encryption decisions have
    been made. Old/new values never contain decrypted field contents.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    action: Mapped[AuditActionType] = mapped_column(
        SQLEnum(AuditActionType, values_callable=_enum_values), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100))
    old_values: Mapped[Optional[dict]] = mapped_column(JSON)
    new_values: Mapped[Optional[dict]] = mapped_column(JSON)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_user", "user_id"),
        Index("idx_audit_timestamp", "timestamp"),
    )
