import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from celery.exceptions import MaxRetriesExceededError, Retry

from src.core.exceptions import TransientStoreError
from src.core.database import build_engine, build_session_maker, create_db_and_tables
from src.core.storage import LocalBlobStore, StorageFactory
from src.modules.assets.keys import AssetKeys
from src.modules.assets.models import AssetStatus
from src.modules.assets.repository import SqlAssetRecordStore
from src.pipeline import tasks
from src.pipeline.consumer import BatchResult
from tests.helpers import make_image, make_message


@pytest.fixture
def task_settings(settings, monkeypatch):
    monkeypatch.setattr(tasks, "get_settings", lambda: settings)
    StorageFactory.reset()
    yield settings
    StorageFactory.reset()


def _with_records(settings, func):
    async def _run():
        engine = build_engine(settings.DATABASE_URL)
        try:
            await create_db_and_tables(engine)
            return await func(SqlAssetRecordStore(build_session_maker(engine)))
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def test_process_notification_batch_ingests_and_reports(task_settings):
    keys = AssetKeys.for_asset("u1", "a1")
    blob_store = LocalBlobStore(base_path=task_settings.LOCAL_STORAGE_PATH)
    asyncio.run(blob_store.put(keys.raw, make_image(3000, 1500)))
    _with_records(task_settings, lambda store: store.put("u1", "a1", {"status": AssetStatus.PENDING_UPLOAD.value}))

    response = tasks.process_notification_batch([
        make_message("m1", keys.raw),
        make_message("m2", "", body="garbage"),
    ])

    assert response == {"batchItemFailures": []}
    record = _with_records(task_settings, lambda store: store.get("u1", "a1"))
    assert record.status == AssetStatus.UPLOADED.value
    assert record.image_metadata["width"] == 1024


def test_process_notification_batch_retries_only_failed_messages(task_settings, monkeypatch):
    _with_records(task_settings, lambda store: store.put("u1", "a1", {"status": AssetStatus.PENDING_UPLOAD.value}))

    async def throttled_get(self, key):
        raise TransientStoreError("throttled", store="blob", key=key)

    monkeypatch.setattr(LocalBlobStore, "get", throttled_get)
    retry = MagicMock(side_effect=Retry("retry scheduled", None))
    monkeypatch.setattr(tasks.process_notification_batch, "retry", retry)
    failing = make_message("m1", AssetKeys.for_asset("u1", "a1").raw)

    with pytest.raises(Retry):
        tasks.process_notification_batch([failing, make_message("m2", "owner/u1/base/a1")])

    retry.assert_called_once()
    assert retry.call_args.kwargs["args"] == [[failing]]
    assert retry.call_args.kwargs["countdown"] == 5
    record = _with_records(task_settings, lambda store: store.get("u1", "a1"))
    assert record.status == AssetStatus.PENDING_UPLOAD.value


def test_process_notification_batch_reports_failures_once_retries_run_out(task_settings, monkeypatch):
    async def throttled_get(self, key):
        raise TransientStoreError("throttled", store="blob", key=key)

    _with_records(task_settings, lambda store: store.put("u1", "a1", {"status": AssetStatus.PENDING_UPLOAD.value}))
    monkeypatch.setattr(LocalBlobStore, "get", throttled_get)
    monkeypatch.setattr(
        tasks.process_notification_batch, "retry", MagicMock(side_effect=MaxRetriesExceededError())
    )

    response = tasks.process_notification_batch([make_message("m1", AssetKeys.for_asset("u1", "a1").raw)])

    assert response == {"batchItemFailures": [{"itemIdentifier": "m1"}]}


def test_process_notification_batch_surfaces_setup_failures(task_settings, monkeypatch):
    def broken_engine(url):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(tasks, "build_engine", broken_engine)

    with pytest.raises(RuntimeError):
        tasks.process_notification_batch([make_message("m1", "owner/u1/raw/a1")])


def test_poll_without_queue_is_skipped(task_settings):
    assert tasks.poll_notification_relay() == {"received": 0}


def test_poll_runs_one_relay_batch(task_settings, monkeypatch):
    task_settings.NOTIFICATION_QUEUE_URL = "https://sqs.example/queue"
    relay = MagicMock()
    relay.poll_once = AsyncMock(return_value=BatchResult(failed_message_ids=["m2"], processed=1, skipped=1))
    monkeypatch.setattr(tasks, "SqsNotificationRelay", lambda settings: relay)

    summary = tasks.poll_notification_relay()

    assert summary == {"processed": 1, "skipped": 1, "redelivery": 1}
    relay.poll_once.assert_awaited_once()
