"""
API module for Kurator.

Provides REST API routes for:
- Authentication and MFA enrollment
- User, block and curator assignment management
- Block-scoped contacts and interactions
- Watchlist monitoring
- Reference values, FAQ, dashboards and the audit trail
"""
