"""
Unit tests for Kurator security modules.

Tests:
- Field encryption (current and legacy formats, fallbacks)
- Access scope resolution
- TOTP verification
- MFA state machine
- Password hashing and access tokens
- Record id parsing
"""

import base64
import hashlib
from dataclasses import dataclass
from datetime import timedelta
from types import SimpleNamespace
from typing import Optional

import pyotp
import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from jose import jwt
from sqlalchemy import select

from kurator.db.orm import Contact
from kurator.ids import MAX_ID, parse_id
from kurator.security.access import (
    ALL_BLOCKS,
    AccessDecision,
    AdminScope,
    CuratorScope,
    NoBlockScope,
    can_access,
    resolver_for,
)
from kurator.security.auth import (
    AuthenticationError,
    Principal,
    UserRole,
    create_access_token,
    hash_password,
    verify_access_token,
    verify_password,
)
from kurator.security.encryption import (
    UNDECRYPTABLE,
    FieldEncryption,
    MisconfiguredKeyError,
)
from kurator.security.mfa import MfaResult, MfaService, TotpService


KEY = "unit-test-master-key"


def legacy_encrypt(master_key: str, plaintext: str) -> str:
    """AES-256-CBC value as written by earlier deployments."""
    key = hashlib.sha256(master_key.encode("utf-8")).digest()
    iv = hashlib.sha256((master_key + "IV").encode("utf-8")).digest()[:16]

    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return base64.b64encode(encryptor.update(padded) + encryptor.finalize()).decode("ascii")


class TestFieldEncryption:
    """Tests for AES-256-GCM field encryption."""

    def test_round_trip(self):
        enc = FieldEncryption(KEY)
        ciphertext = enc.encrypt("Anna Lindqvist")

        assert ciphertext.startswith("enc:")
        assert "Anna" not in ciphertext
        assert enc.decrypt(ciphertext) == "Anna Lindqvist"

    def test_unicode(self):
        enc = FieldEncryption(KEY)
        assert enc.decrypt(enc.encrypt("Åsa Öberg, встреча")) == "Åsa Öberg, встреча"

    def test_random_nonce(self):
        """Same plaintext encrypts differently every time."""
        enc = FieldEncryption(KEY)
        assert enc.encrypt("same") != enc.encrypt("same")

    def test_empty_values_pass_through(self):
        enc = FieldEncryption(KEY)
        assert enc.encrypt("") == ""
        assert enc.encrypt(None) is None
        assert enc.decrypt("") == ""
        assert enc.decrypt(None) is None

    def test_tampered_value_is_undecryptable(self):
        enc = FieldEncryption(KEY)
        raw = bytearray(base64.urlsafe_b64decode(enc.encrypt("secret")[4:]))
        raw[-1] ^= 0x01
        tampered = "enc:" + base64.urlsafe_b64encode(bytes(raw)).decode("ascii")

        assert enc.decrypt(tampered) == UNDECRYPTABLE
        assert enc.try_decrypt(tampered) == (UNDECRYPTABLE, False)

    def test_wrong_key_is_undecryptable(self):
        ciphertext = FieldEncryption(KEY).encrypt("secret")
        assert FieldEncryption("another-key").decrypt(ciphertext) == UNDECRYPTABLE

    def test_truncated_value_is_undecryptable(self):
        assert FieldEncryption(KEY).decrypt("enc:AAAA") == UNDECRYPTABLE

    def test_plaintext_is_returned_as_stored(self):
        """Placeholder data that was never encrypted is shown as-is."""
        enc = FieldEncryption(KEY)
        assert enc.decrypt("John Doe") == "John Doe"
        assert enc.try_decrypt("John Doe") == ("John Doe", False)

    def test_legacy_cbc_values_are_readable(self):
        enc = FieldEncryption(KEY)
        assert enc.decrypt(legacy_encrypt(KEY, "Old Record")) == "Old Record"

    def test_legacy_value_with_wrong_key_passes_through(self):
        stored = legacy_encrypt("some-other-key", "Old Record")
        assert FieldEncryption(KEY).decrypt(stored) == stored

    def test_missing_key_constructs(self):
        enc = FieldEncryption("")
        assert enc.configured is False

    def test_missing_key_fails_on_encrypt(self):
        with pytest.raises(MisconfiguredKeyError):
            FieldEncryption(None).encrypt("value")

    def test_missing_key_never_fails_on_decrypt(self):
        ciphertext = FieldEncryption(KEY).encrypt("value")
        enc = FieldEncryption("")

        assert enc.decrypt(ciphertext) == UNDECRYPTABLE
        assert enc.decrypt("plain") == "plain"


def curator(user_id: int = 1) -> Principal:
    return Principal(id=user_id, login=f"curator{user_id}", role=UserRole.CURATOR)


ADMIN = Principal(id=99, login="admin", role=UserRole.ADMIN)
ANALYST = Principal(id=98, login="analyst", role=UserRole.THREAT_ANALYST)

ASSIGNMENTS = [
    SimpleNamespace(user_id=1, block_id=10),
    SimpleNamespace(user_id=1, block_id=11),
    SimpleNamespace(user_id=2, block_id=20),
]


class TestAccessScope:
    """Tests for block-level access scope."""

    def test_resolver_per_role(self):
        assert isinstance(resolver_for(ADMIN), AdminScope)
        assert isinstance(resolver_for(curator(), ASSIGNMENTS), CuratorScope)
        assert isinstance(resolver_for(ANALYST), NoBlockScope)

    def test_curator_blocks_are_union_of_own_assignments(self):
        scope = resolver_for(curator(1), ASSIGNMENTS)
        assert scope.accessible_block_ids() == frozenset({10, 11})

    def test_admin_sees_all_blocks(self):
        scope = resolver_for(ADMIN)
        assert scope.accessible_block_ids() is ALL_BLOCKS
        assert 12345 in scope.accessible_block_ids()

    def test_decide(self):
        scope = resolver_for(curator(1), ASSIGNMENTS)

        assert scope.decide(10) == AccessDecision.GRANTED
        assert scope.decide(20) == AccessDecision.DENIED
        assert scope.decide(None) == AccessDecision.NOT_FOUND

    def test_missing_entity_is_never_denied(self):
        """A lookup that found nothing must not reveal anything about scope."""
        for principal in (ADMIN, curator(1), ANALYST):
            scope = resolver_for(principal, ASSIGNMENTS)
            assert scope.decide(20, exists=False) == AccessDecision.NOT_FOUND

    def test_admin_and_analyst(self):
        assert resolver_for(ADMIN).decide(20) == AccessDecision.GRANTED
        assert resolver_for(ANALYST).decide(20) == AccessDecision.DENIED

    def test_curator_without_assignments(self):
        scope = resolver_for(curator(3), ASSIGNMENTS)
        assert scope.accessible_block_ids() == frozenset()
        assert scope.can_access(10) is False

    def test_can_access_helper(self):
        assert can_access(curator(2), 20, ASSIGNMENTS) is True
        assert can_access(curator(2), 10, ASSIGNMENTS) is False

    def test_filter_items(self):
        items = [{"id": 1, "block": 10}, {"id": 2, "block": 20}, {"id": 3, "block": None}]

        visible = resolver_for(curator(1), ASSIGNMENTS).filter_items(items, lambda i: i["block"])
        assert [i["id"] for i in visible] == [1]

        everything = resolver_for(ADMIN).filter_items(items, lambda i: i["block"])
        assert [i["id"] for i in everything] == [1, 2]

    def test_filter_query(self):
        stmt = select(Contact)

        assert resolver_for(ADMIN).filter_query(stmt, Contact.block_id) is stmt

        scoped = resolver_for(curator(1), ASSIGNMENTS).filter_query(stmt, Contact.block_id)
        assert "contacts.block_id IN" in str(scoped)

        empty = resolver_for(curator(3), ASSIGNMENTS).filter_query(stmt, Contact.block_id)
        assert stmt.whereclause is None
        assert empty.whereclause is not None

        assert resolver_for(ANALYST).filter_query(stmt, Contact.block_id).whereclause is not None


class TestTotpService:
    """Tests for TOTP code checks."""

    def test_current_code_verifies(self):
        totp = TotpService(issuer="KURATOR")
        secret = totp.generate_secret()
        assert totp.verify(secret, totp.current_code(secret)) is True

    def test_malformed_codes_fail_closed(self):
        totp = TotpService(issuer="KURATOR")
        secret = totp.generate_secret()
        code = totp.current_code(secret)

        for bad in (f" {code}", f"{code} ", f"{code[:3]} {code[3:]}", code[:5], "abcdef", "", None):
            assert totp.verify(secret, bad) is False, bad

    def test_missing_or_corrupt_secret(self):
        totp = TotpService(issuer="KURATOR")
        assert totp.verify(None, "123456") is False
        assert totp.verify("not base32 !!", "123456") is False

    def test_provisioning_uri(self):
        totp = TotpService(issuer="KURATOR")
        uri = totp.provisioning_uri("anna", totp.generate_secret())

        assert uri.startswith("otpauth://totp/")
        assert "issuer=KURATOR" in uri
        assert "anna" in uri


@dataclass
class FakeUser:
    id: int
    login: str
    password_hash: str
    role: UserRole = UserRole.CURATOR
    is_active: bool = True
    is_first_login: bool = True
    mfa_secret: Optional[str] = None
    mfa_enabled: bool = False
    public_key: Optional[str] = None
    logins: int = 0

    def record_successful_login(self) -> None:
        self.logins += 1


class FakeUserStore:
    def __init__(self, *users: FakeUser):
        self.users = {u.id: u for u in users}

    async def get_by_id(self, user_id: int):
        return self.users.get(user_id)

    async def get_by_login(self, login: str):
        return next((u for u in self.users.values() if u.login == login), None)


PASSWORD = "unit-test-password"
PASSWORD_HASH = hash_password(PASSWORD)


def mfa_service(user: FakeUser) -> MfaService:
    return MfaService(
        FakeUserStore(user),
        totp=TotpService(issuer="KURATOR"),
        token_issuer=lambda principal: f"token-{principal.id}",
    )


class TestMfaService:
    """Tests for the login / enrollment / verification state machine."""

    @pytest.mark.asyncio
    async def test_first_login_requires_setup_even_if_enabled(self):
        user = FakeUser(id=1, login="anna", password_hash=PASSWORD_HASH, mfa_enabled=True, mfa_secret="X")
        outcome = await mfa_service(user).login("anna", PASSWORD)

        assert outcome.result == MfaResult.SETUP_REQUIRED
        assert outcome.token is None

    @pytest.mark.asyncio
    async def test_login_failures(self):
        user = FakeUser(id=1, login="anna", password_hash=PASSWORD_HASH)
        service = mfa_service(user)

        assert (await service.login("anna", "wrong")).result == MfaResult.INVALID_CREDENTIALS
        assert (await service.login("anna", "")).result == MfaResult.INVALID_CREDENTIALS
        assert (await service.login("ANNA", PASSWORD)).result == MfaResult.INVALID_CREDENTIALS
        assert (await service.login("", PASSWORD)).result == MfaResult.INVALID_CREDENTIALS

        user.is_active = False
        assert (await service.login("anna", PASSWORD)).result == MfaResult.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_enrollment_walkthrough(self):
        user = FakeUser(id=7, login="anna", password_hash=PASSWORD_HASH)
        service = mfa_service(user)

        setup = await service.setup_mfa(7, PASSWORD)
        assert setup.ok
        assert setup.transitioned
        assert user.mfa_secret == setup.secret
        assert user.is_first_login is False
        assert user.mfa_enabled is False

        pending_login = await service.login("anna", PASSWORD)
        assert pending_login.result == MfaResult.OK
        assert pending_login.token == "token-7"

        verify = await service.verify_mfa("7", pyotp.TOTP(setup.secret).now())
        assert verify.ok
        assert verify.transitioned is True
        assert user.mfa_enabled is True

        enabled_login = await service.login("anna", PASSWORD)
        assert enabled_login.result == MfaResult.MFA_REQUIRED
        assert enabled_login.token is None

    @pytest.mark.asyncio
    async def test_reverification_is_idempotent(self):
        secret = pyotp.random_base32()
        user = FakeUser(
            id=7, login="anna", password_hash=PASSWORD_HASH,
            is_first_login=False, mfa_secret=secret, mfa_enabled=True,
        )
        service = mfa_service(user)

        first = await service.verify_mfa(7, pyotp.TOTP(secret).now())
        second = await service.verify_mfa(7, pyotp.TOTP(secret).now())

        assert first.ok and second.ok
        assert first.transitioned is False
        assert second.transitioned is False
        assert user.mfa_enabled is True
        assert user.logins == 2

    @pytest.mark.asyncio
    async def test_setup_failures(self):
        user = FakeUser(id=7, login="anna", password_hash=PASSWORD_HASH)
        service = mfa_service(user)

        assert (await service.setup_mfa(7, "wrong")).result == MfaResult.INVALID_CREDENTIALS
        assert (await service.setup_mfa(7, "")).result == MfaResult.INVALID_CREDENTIALS
        for bad_id in (0, -1, "abc", None, 8, True):
            assert (await service.setup_mfa(bad_id, PASSWORD)).result == MfaResult.NOT_FOUND
        assert user.mfa_secret is None

    @pytest.mark.asyncio
    async def test_verify_failures(self):
        user = FakeUser(id=7, login="anna", password_hash=PASSWORD_HASH)
        service = mfa_service(user)

        assert (await service.verify_mfa(7, "123456")).result == MfaResult.NOT_CONFIGURED
        assert (await service.verify_mfa("x", "123456")).result == MfaResult.NOT_FOUND

        user.mfa_secret = pyotp.random_base32()
        assert (await service.verify_mfa(7, "12 456")).result == MfaResult.INVALID_CODE
        assert user.mfa_enabled is False

    @pytest.mark.asyncio
    async def test_inactive_user_cannot_enroll_or_verify(self):
        secret = pyotp.random_base32()
        user = FakeUser(
            id=7, login="anna", password_hash=PASSWORD_HASH,
            is_active=False, mfa_secret=secret, mfa_enabled=True,
        )
        service = mfa_service(user)

        verify = await service.verify_mfa(7, pyotp.TOTP(secret).now())
        assert verify.result == MfaResult.INVALID_CREDENTIALS
        assert verify.token is None
        assert user.logins == 0

        setup = await service.setup_mfa(7, PASSWORD)
        assert setup.result == MfaResult.INVALID_CREDENTIALS
        assert user.mfa_secret == secret

    @pytest.mark.asyncio
    async def test_setup_stores_public_key(self):
        user = FakeUser(id=7, login="anna", password_hash=PASSWORD_HASH, public_key="old-key")
        service = mfa_service(user)

        await service.setup_mfa(7, PASSWORD)
        assert user.public_key == "old-key"

        await service.setup_mfa(7, PASSWORD, public_key="new-key")
        assert user.public_key == "new-key"

    @pytest.mark.asyncio
    async def test_out_of_range_id_is_not_found(self):
        user = FakeUser(id=7, login="anna", password_hash=PASSWORD_HASH)
        service = mfa_service(user)

        assert (await service.setup_mfa(MAX_ID + 1, PASSWORD)).result == MfaResult.NOT_FOUND
        assert (await service.verify_mfa("99999999999999999999999", "123456")).result == MfaResult.NOT_FOUND


class TestPasswordsAndTokens:
    def test_password_hashing(self):
        hashed = hash_password("s3cret-value")

        assert hashed.startswith("$argon2")
        assert verify_password("s3cret-value", hashed) is True
        assert verify_password("other", hashed) is False
        assert verify_password("", hashed) is False
        assert verify_password("s3cret-value", "not-a-hash") is False

    def test_token_round_trip(self):
        principal = Principal(id=5, login="anna", role=UserRole.CURATOR)
        assert verify_access_token(create_access_token(principal)) == principal

    def test_token_time_claims_are_integers(self):
        claims = jwt.get_unverified_claims(create_access_token(ADMIN))

        assert isinstance(claims["exp"], int)
        assert isinstance(claims["iat"], int)
        assert claims["exp"] > claims["iat"]
        assert claims["sub"] == str(ADMIN.id)
        assert claims["role"] == ADMIN.role.value

    def test_expired_token(self):
        token = create_access_token(ADMIN, expires_delta=timedelta(minutes=-5))
        with pytest.raises(AuthenticationError):
            verify_access_token(token)

    def test_tampered_token(self):
        token = create_access_token(ADMIN)
        with pytest.raises(AuthenticationError):
            verify_access_token(token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB"))


class TestParseId:
    @pytest.mark.parametrize("value,expected", [(1, 1), ("42", 42), (" 7 ", 7), (MAX_ID, MAX_ID)])
    def test_valid(self, value, expected):
        assert parse_id(value) == expected

    @pytest.mark.parametrize(
        "value",
        [0, -3, "0", "-1", "abc", "1.5", "", None, True, 2.0, "٣",
         MAX_ID + 1, "99999999999999999999999", [1], {"id": 1}],
    )
    def test_invalid(self, value):
        assert parse_id(value) is None
