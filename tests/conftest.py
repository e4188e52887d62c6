import os
import tempfile

# Settings are read at import time, so they must be in place before any app module loads
_tmpdir = tempfile.mkdtemp(prefix="booking-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmpdir}/test.db"
os.environ["BOOKING_CALENDAR_ID"] = ""
os.environ["TIMEZONE"] = "Australia/Sydney"
os.environ["ADMIN_KEY"] = ""
os.environ["MIRROR_MAX_ATTEMPTS"] = "3"
os.environ["MIRROR_RETRY_DELAY"] = "0"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

from database import async_session, engine
from fakes import ADMIN_KEY, NOW, FakeMirror
from main import app, get_admin_key, get_calendar_mirror, get_now


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(db):
    async with async_session() as s:
        yield s


@pytest.fixture
def mirror():
    return FakeMirror()


@pytest_asyncio.fixture
async def client(db, mirror):
    app.dependency_overrides[get_calendar_mirror] = lambda: mirror
    app.dependency_overrides[get_now] = lambda: NOW
    app.dependency_overrides[get_admin_key] = lambda: ADMIN_KEY
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
