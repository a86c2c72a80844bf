import os
import tempfile

# Settings are read at import time; point them at test resources first.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["TELEMETRY_ENABLED"] = "false"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="listings-uploads-")

import httpx
import pytest
import pytest_asyncio

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Import Base + all models so metadata is complete
from listings_api.models.base import Base
from listings_api.models.listing import Listing  # noqa: F401

from listings_api.main import app
from listings_api.core.db import get_db
from listings_api.api.deps import get_normalizer_config, get_photo_store
from listings_api.services.listing_normalizer import NormalizerConfig
from listings_api.services.storage import LocalObjectStore

from tests.fixtures_seed import seed_listing  # noqa: F401


def _test_db_url() -> str:
    # in-memory SQLite unless a real database is provided
    return os.getenv("DATABASE_URL_TEST", "sqlite+aiosqlite://")


@pytest_asyncio.fixture
async def async_engine():
    url = _test_db_url()
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}

    engine = create_async_engine(url, **kwargs)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine):
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session


@pytest.fixture
def photo_store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(str(tmp_path / "uploads"), "/uploads")


@pytest.fixture
def normalizer_config() -> NormalizerConfig:
    return NormalizerConfig()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, photo_store, normalizer_config):
    """
    HTTP client that uses the test DB session, a temporary photo store
    and the `normalizer_config` fixture via dependency overrides.
    """
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_photo_store] = lambda: photo_store
    app.dependency_overrides[get_normalizer_config] = lambda: normalizer_config

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
