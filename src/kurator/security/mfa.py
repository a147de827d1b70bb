"""
TOTP multi-factor authentication for Kurator.

Every account enrolls in MFA on first login:

    unset    no secret stored
    pending  secret issued by setup_mfa, not yet confirmed
    enabled  first valid code accepted by verify_mfa

Login with the right password then branches on that state: a first login
must enroll, an enabled account must present a code, anything else gets a
token straight away.

Operations return an MfaOutcome rather than raising, so the HTTP layer
decides the status code and the audit writer can see whether state changed.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import pyotp

from kurator.config import settings
from kurator.ids import parse_id
from kurator.security.auth import Principal, create_access_token, verify_password

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
TOTP_PERIOD_SECONDS = 30
TOTP_VALID_WINDOW = 1  # one step either side of now


class MfaState(str, Enum):
    UNSET = "unset"
    PENDING = "pending"
    ENABLED = "enabled"


class MfaResult(str, Enum):
    """Outcome of a login / MFA operation."""
    OK = "ok"                                    # token issued or secret generated
    SETUP_REQUIRED = "setup_required"            # first login, enroll before anything else
    MFA_REQUIRED = "mfa_required"                # password accepted, code still needed
    NOT_FOUND = "not_found"                      # no such user (or malformed id)
    INVALID_CREDENTIALS = "invalid_credentials"  # wrong/empty password, inactive user
    INVALID_CODE = "invalid_code"                # TOTP code rejected
    NOT_CONFIGURED = "not_configured"            # verify called before setup


@dataclass
class MfaOutcome:
    result: MfaResult
    user: Any = None
    token: Optional[str] = None
    secret: Optional[str] = None
    provisioning_uri: Optional[str] = None
    transitioned: bool = False

    @property
    def ok(self) -> bool:
        return self.result == MfaResult.OK


class UserStore(Protocol):
    async def get_by_id(self, user_id: int) -> Any: ...

    async def get_by_login(self, login: str) -> Any: ...


class TotpService:
    """RFC 6238 codes: 6 digits, 30 second period, SHA1."""

    def __init__(self, issuer: Optional[str] = None):
        self.issuer = issuer or settings.mfa_issuer

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, login: str, secret: str) -> str:
        """otpauth:// URI for authenticator apps."""
        return pyotp.TOTP(
            secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD_SECONDS
        ).provisioning_uri(name=login, issuer_name=self.issuer)

    def current_code(self, secret: str) -> str:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD_SECONDS).now()

    def verify(self, secret: Optional[str], code: Optional[str]) -> bool:
        """
        Check a code against the secret.

        Anything but exactly six ASCII digits is rejected without being
        normalized, including codes with surrounding or embedded whitespace.
        """
        if not secret or not isinstance(code, str):
            return False
        if len(code) != TOTP_DIGITS or not (code.isascii() and code.isdigit()):
            return False

        try:
            return pyotp.TOTP(
                secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD_SECONDS
            ).verify(code, valid_window=TOTP_VALID_WINDOW)
        except (ValueError, TypeError) as e:
            # Corrupt stored secret (bad base32)
            logger.error(f"TOTP verification failed: {type(e).__name__}")
            return False


def principal_for(user: Any) -> Principal:
    return Principal(id=user.id, login=user.login, role=user.role)


class MfaService:
    """Login, MFA enrollment and MFA verification."""

    def __init__(
        self,
        users: UserStore,
        totp: Optional[TotpService] = None,
        token_issuer: Callable[[Principal], str] = create_access_token,
    ):
        self.users = users
        self.totp = totp or TotpService()
        self.token_issuer = token_issuer

    async def _find_user(self, user_id: Any) -> Any:
        parsed = parse_id(user_id)
        if parsed is None:
            return None
        return await self.users.get_by_id(parsed)

    def _issue_token(self, user: Any) -> str:
        return self.token_issuer(principal_for(user))

    async def login(self, login: str, password: str) -> MfaOutcome:
        """
        Verify credentials and decide the next step.

        A first login takes priority over an enabled MFA: enrollment must
        complete before a code can be asked for.
        """
        user = await self.users.get_by_login(login) if login else None
        if user is None or not user.is_active or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login attempt for '{login}'")
            return MfaOutcome(MfaResult.INVALID_CREDENTIALS)

        if user.is_first_login:
            logger.info(f"User {user.id} must enroll in MFA")
            return MfaOutcome(MfaResult.SETUP_REQUIRED, user=user)

        if user.mfa_enabled:
            return MfaOutcome(MfaResult.MFA_REQUIRED, user=user)

        user.record_successful_login()
        logger.info(f"User {user.id} logged in without MFA")
        return MfaOutcome(MfaResult.OK, user=user, token=self._issue_token(user))

    async def setup_mfa(
        self, user_id: Any, password: str, public_key: Optional[str] = None
    ) -> MfaOutcome:
        """
        Issue a new TOTP secret after re-verifying the password.

        The account moves to pending: first login is cleared, MFA stays
        disabled until the first code is verified. A public key sent along
        with the enrollment is stored on the account.
        """
        user = await self._find_user(user_id)
        if user is None:
            return MfaOutcome(MfaResult.NOT_FOUND)

        if not user.is_active:
            logger.warning(f"MFA setup rejected for user {user.id}: account inactive")
            return MfaOutcome(MfaResult.INVALID_CREDENTIALS, user=user)

        if not verify_password(password, user.password_hash):
            logger.warning(f"MFA setup rejected for user {user.id}: bad password")
            return MfaOutcome(MfaResult.INVALID_CREDENTIALS, user=user)

        secret = self.totp.generate_secret()
        user.mfa_secret = secret
        user.mfa_enabled = False
        user.is_first_login = False
        if public_key is not None:
            user.public_key = public_key

        logger.info(f"MFA secret issued for user {user.id}")
        return MfaOutcome(
            MfaResult.OK,
            user=user,
            secret=secret,
            provisioning_uri=self.totp.provisioning_uri(user.login, secret),
            transitioned=True,
        )

    async def verify_mfa(self, user_id: Any, code: Any) -> MfaOutcome:
        """
        Verify a TOTP code, enable MFA on first success and issue a token.

        Re-verifying an enabled account only issues a new token.
        """
        user = await self._find_user(user_id)
        if user is None:
            return MfaOutcome(MfaResult.NOT_FOUND)

        if not user.is_active:
            logger.warning(f"MFA verification rejected for user {user.id}: account inactive")
            return MfaOutcome(MfaResult.INVALID_CREDENTIALS, user=user)

        if not user.mfa_secret:
            return MfaOutcome(MfaResult.NOT_CONFIGURED, user=user)

        if not self.totp.verify(user.mfa_secret, code):
            logger.warning(f"Invalid MFA code for user {user.id}")
            return MfaOutcome(MfaResult.INVALID_CODE, user=user)

        transitioned = not user.mfa_enabled
        user.mfa_enabled = True
        user.record_successful_login()

        if transitioned:
            logger.info(f"MFA enabled for user {user.id}")

        return MfaOutcome(
            MfaResult.OK,
            user=user,
            token=self._issue_token(user),
            transitioned=transitioned,
        )
