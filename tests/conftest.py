"""pytest fixtures for Mist backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- engine: Function-scoped SQLite (aiosqlite) engine with the schema created
- session: Function-scoped database session
- uow_factory: Function-scoped UnitOfWork factory
- user: A user holding 100 ink
- storage / notifier / moderation: AsyncMock collaborators
"""

import os

# Settings are read when mist.app is imported; point them at a test environment first
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel  # noqa: E402

from mist import models  # noqa: E402, F401
from mist.models.user import User  # noqa: E402
from mist.services.moderation import ModerationClient  # noqa: E402
from mist.services.notifications.fcm_client import FcmClient  # noqa: E402
from mist.services.storage.backblaze_client import BackblazeClient, StoredObject  # noqa: E402
from mist.uow import create_uow_factory  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Provide a fresh file-backed SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(engine: AsyncEngine):
    """Provide function-scoped UnitOfWork factory bound to the test database."""
    return create_uow_factory(async_sessionmaker(bind=engine, expire_on_commit=False))


@pytest_asyncio.fixture
async def user(uow_factory) -> User:
    """User with 100 ink available and nothing pending."""
    async with await uow_factory() as uow:
        return await uow.users.add(User(username="painter", ink_available=100, ink_lifetime=100))


@pytest.fixture
def storage() -> AsyncMock:
    """Blob store double that hands out sequential file ids."""
    storage = AsyncMock(spec=BackblazeClient)
    uploaded: list[str] = []

    def _upload(data: bytes, mime_type: str, path_hint: str) -> StoredObject:
        uploaded.append(path_hint)
        file_id = f"file-{len(uploaded)}"
        return StoredObject(
            file_id=file_id,
            file_name=path_hint,
            url=f"https://f000.backblazeb2.com/b2api/v1/b2_download_file_by_id?fileId={file_id}",
            mime_type=mime_type,
        )

    storage.upload.side_effect = _upload
    storage.delete.return_value = True
    return storage


@pytest.fixture
def notifier() -> AsyncMock:
    notifier = AsyncMock(spec=FcmClient)
    notifier.send_push.return_value = True
    return notifier


@pytest.fixture
def moderation() -> AsyncMock:
    moderation = AsyncMock(spec=ModerationClient)
    moderation.is_flagged.return_value = False
    return moderation
