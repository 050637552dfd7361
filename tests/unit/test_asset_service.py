import pytest
from unittest.mock import AsyncMock

from src.core.exceptions import AssetNotFoundError, TransientStoreError
from src.modules.assets.keys import AssetKeys
from src.modules.assets.models import AssetStatus


@pytest.mark.asyncio
async def test_grant_for_new_asset_creates_pending_record(asset_service, record_store):
    asset_id, grant = await asset_service.issue_upload_grant("u1")

    record = await record_store.get("u1", asset_id)
    assert record.status == AssetStatus.PENDING_UPLOAD.value
    assert record.image_metadata == {}
    assert grant.fields["key"] == f"owner/u1/raw/{asset_id}"
    assert grant.fields["max-bytes"] == str(10485760)


@pytest.mark.asyncio
async def test_generated_asset_ids_are_unique(asset_service):
    ids = {(await asset_service.issue_upload_grant("u1"))[0] for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.asyncio
async def test_regrant_requires_existing_record(asset_service):
    with pytest.raises(AssetNotFoundError):
        await asset_service.issue_upload_grant("u1", "missing")


@pytest.mark.asyncio
async def test_regrant_resets_uploaded_asset(asset_service, record_store):
    await record_store.put("u1", "a1", {
        "status": AssetStatus.UPLOADED.value,
        "is_high_resolution_available": True,
        "image_metadata": {"width": 1024, "height": 512, "format": "jpeg"},
        "hi_res_metadata": {"width": 4000, "height": 2000, "format": "jpeg"},
    })

    asset_id, _ = await asset_service.issue_upload_grant("u1", "a1")

    record = await record_store.get("u1", "a1")
    assert asset_id == "a1"
    assert record.status == AssetStatus.PENDING_UPLOAD.value
    assert record.is_high_resolution_available is False
    assert record.image_metadata == {}
    assert record.hi_res_metadata is None


@pytest.mark.asyncio
async def test_regrant_while_pending_is_accepted(asset_service):
    asset_id, _ = await asset_service.issue_upload_grant("u1")
    again, _ = await asset_service.issue_upload_grant("u1", asset_id)
    assert again == asset_id


@pytest.mark.asyncio
async def test_asset_id_allocation_gives_up_after_configured_attempts(settings, blob_store):
    from src.modules.assets.service import AssetService

    record_store = AsyncMock()
    record_store.get.return_value = object()  # every id already taken
    service = AssetService(settings, blob_store, record_store)

    with pytest.raises(TransientStoreError):
        await service.issue_upload_grant("u1")
    assert record_store.get.await_count == settings.ASSET_ID_GENERATION_ATTEMPTS


@pytest.mark.asyncio
async def test_ensure_profile_asset_is_idempotent(asset_service, record_store):
    first = await asset_service.ensure_profile_asset("u1")
    second = await asset_service.ensure_profile_asset("u1")

    assert first.asset_id == "u1"
    assert first.is_profile_asset
    assert second.created_time == first.created_time
    assert (await record_store.get("u1", "u1")).status == AssetStatus.PENDING_UPLOAD.value


@pytest.mark.asyncio
async def test_get_asset_with_urls(asset_service, record_store):
    await record_store.put("u1", "a1", {
        "status": AssetStatus.UPLOADED.value,
        "is_high_resolution_available": True,
        "image_metadata": {"width": 1024, "height": 512, "format": "jpeg"},
        "hi_res_metadata": {"width": 4000, "height": 2000, "format": "jpeg"},
    })

    view = await asset_service.get_asset("u1", "a1")

    assert view.urls.url == "/static/storage/owner/u1/base/a1"
    assert view.urls.hiResUrl == "/static/storage/owner/u1/hiRes/a1"
    assert view.hiResMetadata["width"] == 4000


@pytest.mark.asyncio
async def test_pending_asset_has_no_urls(asset_service):
    asset_id, _ = await asset_service.issue_upload_grant("u1")
    view = await asset_service.get_asset("u1", asset_id)
    assert view.urls is None


@pytest.mark.asyncio
async def test_get_missing_asset(asset_service):
    with pytest.raises(AssetNotFoundError):
        await asset_service.get_asset("u1", "nope")


@pytest.mark.asyncio
async def test_list_assets_uses_default_page_size(asset_service, record_store):
    for i in range(7):
        await record_store.put("u1", f"a{i}", {})

    page = await asset_service.list_assets("u1")
    assert len(page.items) == 5
    assert page.nextCursor

    rest = await asset_service.list_assets("u1", cursor=page.nextCursor)
    assert [item.id for item in rest.items] == ["a5", "a6"]
    assert rest.nextCursor is None


@pytest.mark.asyncio
async def test_list_assets_caps_page_size(asset_service, record_store, settings):
    record_store.query_by_owner = AsyncMock(wraps=record_store.query_by_owner)
    await asset_service.list_assets("u1", page_size=10000)
    assert record_store.query_by_owner.await_args.args[1] == settings.ASSET_LIST_MAX_PAGE_SIZE


@pytest.mark.asyncio
async def test_delete_cascades_to_all_objects(asset_service, record_store, blob_store):
    await record_store.put("u1", "a1", {"status": AssetStatus.UPLOADED.value})
    keys = AssetKeys.for_asset("u1", "a1")
    for key in keys:
        await blob_store.put(key, b"x")

    assert await asset_service.delete_asset("u1", "a1") is True

    assert await record_store.get("u1", "a1") is None
    for key in keys:
        assert await blob_store.head(key) is None


@pytest.mark.asyncio
async def test_delete_missing_record_leaves_objects_alone(asset_service, blob_store):
    await blob_store.put("owner/u1/base/a1", b"x")

    assert await asset_service.delete_asset("u1", "a1") is False
    assert await blob_store.head("owner/u1/base/a1") is not None


@pytest.mark.asyncio
async def test_delete_continues_past_failing_key(settings, record_store):
    from src.modules.assets.service import AssetService

    await record_store.put("u1", "a1", {})
    blob_store = AsyncMock()
    blob_store.delete.side_effect = [TransientStoreError("boom", store="blob"), None, None]
    service = AssetService(settings, blob_store, record_store)

    assert await service.delete_asset("u1", "a1") is True
    assert blob_store.delete.await_count == 3
