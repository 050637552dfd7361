from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport

from src.core.config import Settings
from src.core.database import build_engine, build_session_maker, create_db_and_tables
from src.core.storage import LocalBlobStore
from src.modules.assets.repository import SqlAssetRecordStore
from src.modules.assets.service import AssetService
from src.pipeline.consumer import NotificationConsumer
from src.pipeline.ingestion import IngestionService


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'assets.db'}",
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        IMAGE_DOWNSCALE_THRESHOLD_PX=1024,
        INGEST_RECORD_TIMEOUT_SECONDS=5.0,
        INGEST_MAX_CONCURRENCY=4,
        LOG_FORMAT_JSON=False,
    )


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings.DATABASE_URL)
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def record_store(engine) -> SqlAssetRecordStore:
    return SqlAssetRecordStore(build_session_maker(engine))


@pytest.fixture
def blob_store(settings) -> LocalBlobStore:
    return LocalBlobStore(
        base_path=settings.LOCAL_STORAGE_PATH,
        url_prefix=settings.LOCAL_STORAGE_URL_PREFIX,
        upload_url=settings.LOCAL_UPLOAD_URL,
        signing_key=settings.LOCAL_STORAGE_SIGNING_KEY,
    )


@pytest.fixture
def asset_service(settings, blob_store, record_store) -> AssetService:
    return AssetService(settings, blob_store, record_store)


@pytest.fixture
def ingestion(settings, blob_store, record_store) -> IngestionService:
    return IngestionService(settings, blob_store, record_store)


@pytest.fixture
def consumer(settings, ingestion) -> NotificationConsumer:
    return NotificationConsumer(settings, ingestion)


@pytest.fixture
async def client(settings, blob_store, record_store) -> AsyncGenerator[AsyncClient, None]:
    from src.main import app
    from src.api.dependencies import get_app_settings, get_blob_store, get_record_store

    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_record_store] = lambda: record_store
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
