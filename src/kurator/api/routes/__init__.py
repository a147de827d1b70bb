"""
API route modules.
"""

from kurator.api.routes.auth import router as auth_router
from kurator.api.routes.users import router as users_router
from kurator.api.routes.blocks import router as blocks_router
from kurator.api.routes.contacts import router as contacts_router
from kurator.api.routes.interactions import router as interactions_router
from kurator.api.routes.watchlist import router as watchlist_router
from kurator.api.routes.references import router as references_router
from kurator.api.routes.faq import router as faq_router
from kurator.api.routes.dashboard import router as dashboard_router
from kurator.api.routes.audit import router as audit_router

__all__ = [
    "auth_router",
    "users_router",
    "blocks_router",
    "contacts_router",
    "interactions_router",
    "watchlist_router",
    "references_router",
    "faq_router",
    "dashboard_router",
    "audit_router",
]
