"""
HTTP translation of access and MFA outcomes.

The security core reports failures as values; this module is the one place
they become status codes.
"""

from typing import Any, Optional

from fastapi import HTTPException, status

from kurator.ids import parse_id
from kurator.security.access import AccessDecision
from kurator.security.mfa import MfaResult


MFA_STATUS = {
    MfaResult.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "User not found"),
    MfaResult.INVALID_CREDENTIALS: (status.HTTP_401_UNAUTHORIZED, "Invalid credentials"),
    MfaResult.INVALID_CODE: (status.HTTP_401_UNAUTHORIZED, "Invalid MFA code"),
    MfaResult.NOT_CONFIGURED: (status.HTTP_400_BAD_REQUEST, "MFA not set up for this user"),
}


def not_found(resource: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")


def require_id(value: Any, resource: str) -> int:
    """Parse a path id; malformed ids are reported as a missing resource."""
    parsed = parse_id(value)
    if parsed is None:
        raise not_found(resource)
    return parsed


def raise_for_access(decision: AccessDecision, resource: str) -> None:
    """403 for an existing out-of-scope entity, 404 for a missing one."""
    if decision == AccessDecision.NOT_FOUND:
        raise not_found(resource)
    if decision == AccessDecision.DENIED:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access to this {resource.lower()} is not permitted",
        )


def raise_for_mfa(result: MfaResult, detail: Optional[str] = None) -> None:
    if result in MFA_STATUS:
        code, message = MFA_STATUS[result]
        headers = {"WWW-Authenticate": "Bearer"} if code == status.HTTP_401_UNAUTHORIZED else None
        raise HTTPException(status_code=code, detail=detail or message, headers=headers)
