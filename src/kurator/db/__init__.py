"""
Database module for Kurator.
"""

from kurator.db.orm import (
    FAQ,
    AuditActionType,
    AuditLog,
    Base,
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

__all__ = [
    "Base",
    "User",
    "Block",
    "BlockStatus",
    "BlockCurator",
    "CuratorType",
    "Contact",
    "Interaction",
    "InfluenceStatusHistory",
    "Watchlist",
    "WatchlistHistory",
    "RiskLevel",
    "MonitoringFrequency",
    "ReferenceValue",
    "FAQ",
    "AuditLog",
    "AuditActionType",
]
