import os

# Keep the test app away from MySQL, the face model and the log file
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PRELOAD_FACE_SERVICE"] = "false"
os.environ["LOG_FILE"] = ""

from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from biotrack.crud.identity import create_identity, save_embedding
from biotrack.crud.school_class import add_member, create_class
from biotrack.database import Database
from biotrack.dependencies import get_clock, get_db
from biotrack.main import app
from biotrack.services.ledger import SessionLedger


class FixedClock:
    """Stands in for the server clock; tests move it with ``set``"""

    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def set(self, moment: datetime):
        self.moment = moment


@pytest_asyncio.fixture
async def test_database():
    test_db = Database()
    assert await test_db.connect("sqlite+aiosqlite:///:memory:")
    await test_db.create_tables()
    yield test_db
    await test_db.disconnect()


@pytest_asyncio.fixture
async def db(test_database):
    async with test_database.get_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(test_database, server_clock):
    async def override_get_db():
        async with test_database.get_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: server_clock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def server_clock():
    # 2024-01-01 is a Monday
    return FixedClock(datetime(2024, 1, 1, 12, 0))


@pytest.fixture
def ledger():
    return SessionLedger(grace_minutes=20)


@pytest_asyncio.fixture
async def student(db):
    return await create_identity(db, "S-001", "Ada Student")


@pytest_asyncio.fixture
async def make_class(db):
    """Create a class with the given windows and enroll the listed identities"""
    async def _make(subject, windows, members=(), join_code=None):
        school_class = await create_class(db, subject, windows, join_code=join_code)
        for identity_id in members:
            await add_member(db, school_class, identity_id)
        return school_class
    return _make


@pytest_asyncio.fixture
async def enroll(db):
    async def _enroll(identity_id, embedding, role="student"):
        await create_identity(db, identity_id, identity_id.title(), role=role)
        assert await save_embedding(db, identity_id, embedding)
    return _enroll
