import asyncio
import json

import pytest
from unittest.mock import AsyncMock

from src.core.exceptions import MalformedInputError, TransientStoreError
from src.modules.assets.keys import AssetKeys
from src.modules.assets.models import AssetStatus
from src.pipeline.consumer import BatchResult, NotificationConsumer
from tests.helpers import make_image, make_message


def _mock_consumer(settings, side_effect=None):
    ingestion = AsyncMock()
    ingestion.ingest.side_effect = side_effect
    ingestion.ingest.return_value = None
    return NotificationConsumer(settings, ingestion), ingestion


@pytest.mark.asyncio
async def test_malformed_message_does_not_block_good_one(consumer, asset_service, blob_store, record_store):
    asset_id, _ = await asset_service.issue_upload_grant("u1")
    await blob_store.put(AssetKeys.for_asset("u1", asset_id).raw, make_image(800, 600))

    result = await consumer.on_notification_batch([
        make_message("m1", "", body="{not json"),
        make_message("m2", f"owner/u1/raw/{asset_id}"),
    ])

    assert result.ok
    assert result.failed_message_ids == []
    assert (await record_store.get("u1", asset_id)).status == AssetStatus.UPLOADED.value


@pytest.mark.asyncio
async def test_only_raw_create_events_reach_ingestion(settings):
    consumer, ingestion = _mock_consumer(settings)

    result = await consumer.on_notification_batch([
        make_message("m1", "owner/u1/base/a1"),
        make_message("m2", "owner/u1/raw/a1", event_name="ObjectRemoved:Delete"),
        make_message("m3", "owner/u1/hiRes/a1"),
        make_message("m4", "somewhere/else"),
    ])

    ingestion.ingest.assert_not_awaited()
    assert result.ok
    assert result.skipped == 4


@pytest.mark.asyncio
async def test_event_name_variants_and_flat_records(settings):
    consumer, ingestion = _mock_consumer(settings)
    flat = json.dumps({"Records": [{"eventName": "s3:ObjectCreated:Post", "key": "owner/u2/raw/b1"}]})

    await consumer.on_notification_batch([
        make_message("m1", "owner/u1/raw/a1", event_name="ObjectCreated:CompleteMultipartUpload"),
        make_message("m2", "", body=flat),
    ])

    awaited = sorted(call.args for call in ingestion.ingest.await_args_list)
    assert awaited == [("u1", "a1"), ("u2", "b1")]


@pytest.mark.asyncio
async def test_keys_are_decoded_before_matching(settings):
    consumer, ingestion = _mock_consumer(settings)

    await consumer.on_notification_batch([make_message("m1", "owner/jane+doe/raw/a%2B1")])

    ingestion.ingest.assert_awaited_once_with("jane doe", "a+1")


@pytest.mark.asyncio
async def test_duplicate_records_in_a_batch_are_ingested_once(settings):
    consumer, ingestion = _mock_consumer(settings)
    body = json.dumps({"Records": [
        {"eventName": "ObjectCreated:Put", "s3": {"object": {"key": "owner/u1/raw/a1"}}},
        {"eventName": "ObjectCreated:Put", "s3": {"object": {"key": "owner/u1/raw/a1"}}},
    ]})

    await consumer.on_notification_batch([
        make_message("m1", "", body=body),
        make_message("m2", "owner/u1/raw/a1"),
    ])

    ingestion.ingest.assert_awaited_once_with("u1", "a1")


@pytest.mark.asyncio
async def test_transient_failure_reports_message_for_redelivery(settings):
    async def ingest(owner_id, asset_id):
        if asset_id == "bad":
            raise TransientStoreError("throttled", store="blob")
        return None

    consumer, _ = _mock_consumer(settings, side_effect=ingest)

    result = await consumer.on_notification_batch([
        make_message("m1", "owner/u1/raw/good"),
        make_message("m2", "owner/u1/raw/bad"),
    ])

    assert result.failed_message_ids == ["m2"]
    assert result.to_partial_batch_response() == {"batchItemFailures": [{"itemIdentifier": "m2"}]}


@pytest.mark.asyncio
async def test_malformed_image_is_skipped_not_redelivered(settings):
    consumer, _ = _mock_consumer(settings, side_effect=MalformedInputError("Cannot decode image"))

    result = await consumer.on_notification_batch([make_message("m1", "owner/u1/raw/a1")])

    assert result.ok


@pytest.mark.asyncio
async def test_unexpected_error_is_reported_for_redelivery(settings):
    consumer, _ = _mock_consumer(settings, side_effect=RuntimeError("boom"))

    result = await consumer.on_notification_batch([make_message("m1", "owner/u1/raw/a1")])

    assert result.failed_message_ids == ["m1"]


@pytest.mark.asyncio
async def test_slow_record_times_out_without_blocking_siblings(settings):
    settings.INGEST_RECORD_TIMEOUT_SECONDS = 0.05

    async def ingest(owner_id, asset_id):
        if asset_id == "slow":
            await asyncio.sleep(5)
        return None

    consumer, ingestion = _mock_consumer(settings, side_effect=ingest)

    result = await consumer.on_notification_batch([
        make_message("m1", "owner/u1/raw/slow"),
        make_message("m2", "owner/u1/raw/fast"),
    ])

    assert result.failed_message_ids == ["m1"]
    assert ingestion.ingest.await_count == 2


@pytest.mark.asyncio
async def test_concurrency_is_bounded(settings):
    settings.INGEST_MAX_CONCURRENCY = 2
    running = 0
    peak = 0

    async def ingest(owner_id, asset_id):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return None

    consumer, _ = _mock_consumer(settings, side_effect=ingest)

    await consumer.on_notification_batch(
        [make_message(f"m{i}", f"owner/u1/raw/a{i}") for i in range(6)]
    )

    assert peak == 2


@pytest.mark.asyncio
async def test_concurrent_delete_race_is_benign(consumer, asset_service, blob_store, record_store):
    asset_id, _ = await asset_service.issue_upload_grant("u1")
    keys = AssetKeys.for_asset("u1", asset_id)
    await blob_store.put(keys.raw, make_image(2000, 1000))

    original_delete = blob_store.delete

    async def delete_racing_owner(key):
        if key == keys.raw:
            await record_store.delete_returning_previous("u1", asset_id)
        await original_delete(key)

    blob_store.delete = delete_racing_owner

    result = await consumer.on_notification_batch([make_message("m1", keys.raw)])

    assert result.ok
    assert await record_store.get("u1", asset_id) is None
    for key in keys:
        assert await blob_store.head(key) is None


@pytest.mark.asyncio
async def test_envelope_without_records_is_ignored(settings):
    consumer, ingestion = _mock_consumer(settings)

    result = await consumer.on_notification_batch([
        make_message("m1", "", body=json.dumps({"Event": "s3:TestEvent"})),
        make_message("m2", "", body=json.dumps([1, 2, 3])),
    ])

    assert result.ok
    ingestion.ingest.assert_not_awaited()


def test_empty_batch_result_renders_empty_failure_list():
    assert BatchResult().to_partial_batch_response() == {"batchItemFailures": []}
