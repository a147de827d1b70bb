"""
Pytest configuration and shared fixtures for Kurator tests.

Environment variables are set before kurator is imported so that the
settings object is built from them. HTTP tests run against a temporary
SQLite database that is created and seeded per test.
"""

import asyncio
import os

os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-kurator-jwt-signing-0123456789"
os.environ["FIELD_ENCRYPTION_KEY"] = "test-field-encryption-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from kurator.db.orm import Base, Block, BlockCurator, Contact, CuratorType, User  # noqa: E402
from kurator.security.auth import Principal, UserRole, create_access_token, hash_password  # noqa: E402
from kurator.security.encryption import FieldEncryption  # noqa: E402


TEST_ENCRYPTION_KEY = "test-field-encryption-key"
PASSWORD = "correct-horse-battery-staple"

# Argon2 is slow on purpose; hash once for every seeded account
PASSWORD_HASH = hash_password(PASSWORD)

ROLES = {
    "admin": UserRole.ADMIN,
    "curator": UserRole.CURATOR,
    "analyst": UserRole.THREAT_ANALYST,
    "newbie": UserRole.CURATOR,
}


async def _create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _seed(factory, encryption: FieldEncryption) -> dict[str, int]:
    """
    Seed the scenario most tests share.

    curator is primary curator of block TEST only. Contact TEST-001 lives in
    TEST and is overdue; contact OTHER-001 lives in OTHER.
    """
    async with factory() as session:
        users = {
            login: User(
                login=login,
                password_hash=PASSWORD_HASH,
                role=role,
                is_first_login=(login == "newbie"),
                mfa_enabled=False,
                is_active=True,
            )
            for login, role in ROLES.items()
        }
        test_block = Block(name="Test block", code="TEST")
        other_block = Block(name="Other block", code="OTHER")
        session.add_all([*users.values(), test_block, other_block])
        await session.flush()

        session.add(
            BlockCurator(
                block_id=test_block.id,
                user_id=users["curator"].id,
                curator_type=CuratorType.PRIMARY,
                assigned_by=users["admin"].id,
            )
        )

        contact_x = Contact(
            contact_id="TEST-001",
            block_id=test_block.id,
            full_name_encrypted=encryption.encrypt("John Doe"),
            position="Director",
            notes_encrypted=encryption.encrypt("Met at the annual forum"),
            next_touch_date=datetime.utcnow() - timedelta(days=3),
            responsible_curator_id=users["curator"].id,
        )
        contact_y = Contact(
            contact_id="OTHER-001",
            block_id=other_block.id,
            full_name_encrypted=encryption.encrypt("Jane Roe"),
            position="Analyst",
            responsible_curator_id=users["admin"].id,
        )
        session.add_all([contact_x, contact_y])
        await session.commit()

        ids = {login: user.id for login, user in users.items()}
        ids.update(
            test_block=test_block.id,
            other_block=other_block.id,
            contact_x=contact_x.id,
            contact_y=contact_y.id,
        )
        return ids


@pytest.fixture
def encryption() -> FieldEncryption:
    return FieldEncryption(TEST_ENCRYPTION_KEY)


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'kurator.db'}",
        poolclass=NullPool,
    )
    asyncio.run(_create_schema(engine))
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())


@pytest.fixture
def seeded(session_factory, encryption) -> dict[str, int]:
    """Ids of the seeded users, blocks and contacts."""
    return asyncio.run(_seed(session_factory, encryption))


@pytest.fixture
def app(session_factory, encryption):
    """The application wired to the test database, without running its lifespan."""
    from kurator.main import app

    app.state.db_session = session_factory
    app.state.field_encryption = encryption
    return app


@pytest.fixture
def client(app, seeded) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def headers(seeded) -> dict[str, dict[str, str]]:
    """Authorization headers per seeded login."""
    result = {}
    for login, role in ROLES.items():
        token = create_access_token(Principal(id=seeded[login], login=login, role=role))
        result[login] = {"Authorization": f"Bearer {token}"}
    return result


@pytest.fixture
def run_db(session_factory):
    """Run an async callable against a fresh session and return its result."""

    def run(fn):
        async def _run():
            async with session_factory() as session:
                return await fn(session)

        return asyncio.run(_run())

    return run
