"""
Asset Service

Request-side operations on an owner's assets:
- issue_upload_grant: (re)open an upload cycle and mint the raw-key grant
- ensure_profile_asset: create the owner's profile asset record on first use
- get_asset / list_assets: read model with download URLs
- delete_asset: record first, then the backing objects
"""

import uuid
from typing import Optional, Tuple

from src.core.config import Settings
from src.core.exceptions import AssetNotFoundError, MalformedInputError, TransientStoreError
from src.core.logging import get_logger, LogContext
from src.core.metrics import record_upload_grant, record_asset_deletion
from src.core.storage import IBlobStore, UploadGrant
from src.modules.assets.keys import AssetKeys
from src.modules.assets.models import AssetRecord, AssetStatus, transition
from src.modules.assets.repository import IAssetRecordStore
from src.modules.assets.schemas import AssetListView, AssetUrls, AssetView

logger = get_logger(__name__)

PENDING_FIELDS = {
    "status": AssetStatus.PENDING_UPLOAD.value,
    "is_high_resolution_available": False,
    "image_metadata": {},
    "hi_res_metadata": None,
}


class AssetService:
    def __init__(self, settings: Settings, blob_store: IBlobStore, record_store: IAssetRecordStore):
        self.settings = settings
        self.blob_store = blob_store
        self.record_store = record_store

    async def _new_asset_id(self, owner_id: str) -> str:
        for _ in range(self.settings.ASSET_ID_GENERATION_ATTEMPTS):
            asset_id = uuid.uuid4().hex
            if await self.record_store.get(owner_id, asset_id) is None:
                return asset_id
        raise TransientStoreError(
            "Could not allocate an unused asset id",
            store="record",
            owner_id=owner_id
        )

    async def issue_upload_grant(self, owner_id: str, asset_id: Optional[str] = None) -> Tuple[str, UploadGrant]:
        """
        Put the asset into PENDING_UPLOAD and mint an upload grant for its raw key.

        Without asset_id a fresh id is generated; with one, the record must
        already exist.

        Returns:
            (asset_id, grant)
        """
        if asset_id is None:
            asset_id = await self._new_asset_id(owner_id)
            kind = "new"
        else:
            record = await self.record_store.get(owner_id, asset_id)
            if record is None:
                raise AssetNotFoundError(owner_id, asset_id)
            transition(record.status, AssetStatus.PENDING_UPLOAD)
            kind = "reupload"

        with LogContext(owner_id=owner_id, asset_id=asset_id, stage="grant"):
            await self.record_store.put(owner_id, asset_id, dict(PENDING_FIELDS))

            keys = AssetKeys.for_asset(owner_id, asset_id)
            grant = await self.blob_store.issue_upload_grant(
                keys.raw,
                max_bytes=self.settings.UPLOAD_MAX_BYTES,
                ttl_seconds=self.settings.UPLOAD_GRANT_TTL_SECONDS,
            )
            record_upload_grant(kind)
            logger.info("upload_grant_issued", kind=kind, expires_at=grant.expires_at.isoformat())

        return asset_id, grant

    async def ensure_profile_asset(self, owner_id: str) -> AssetRecord:
        """Return the owner's profile asset record, creating it (PENDING_UPLOAD) if missing."""
        record = await self.record_store.get(owner_id, owner_id)
        if record is None:
            record = await self.record_store.put(owner_id, owner_id, dict(PENDING_FIELDS))
            logger.info("profile_asset_created", owner_id=owner_id)
        return record

    async def _view(self, record: AssetRecord, with_urls: bool) -> AssetView:
        view = AssetView(**record.to_response_dict())
        if with_urls and record.status == AssetStatus.UPLOADED.value:
            keys = AssetKeys.for_asset(record.owner_id, record.asset_id)
            ttl = self.settings.DOWNLOAD_URL_TTL_SECONDS
            urls = AssetUrls(url=await self.blob_store.issue_download_url(keys.base, ttl))
            if record.is_high_resolution_available:
                urls.hiResUrl = await self.blob_store.issue_download_url(keys.hi_res, ttl)
            view.urls = urls
        return view

    async def get_asset(self, owner_id: str, asset_id: str, with_urls: bool = True) -> AssetView:
        record = await self.record_store.get(owner_id, asset_id)
        if record is None:
            raise AssetNotFoundError(owner_id, asset_id)
        return await self._view(record, with_urls)

    async def list_assets(
        self,
        owner_id: str,
        page_size: Optional[int] = None,
        cursor: Optional[str] = None,
        with_urls: bool = True
    ) -> AssetListView:
        """List an owner's assets in asset-id order, one page at a time."""
        if page_size is None:
            page_size = self.settings.ASSET_LIST_DEFAULT_PAGE_SIZE
        if page_size < 1:
            raise MalformedInputError(f"page_size must be positive, got {page_size}")
        page_size = min(page_size, self.settings.ASSET_LIST_MAX_PAGE_SIZE)

        page = await self.record_store.query_by_owner(owner_id, page_size, cursor)
        items = [await self._view(record, with_urls) for record in page.items]
        return AssetListView(items=items, nextCursor=page.next_cursor)

    async def delete_asset(self, owner_id: str, asset_id: str) -> bool:
        """
        Delete the record, then its objects.

        Returns whether the record existed. Object deletion is best effort:
        a failing key is logged and the remaining keys are still attempted.
        """
        with LogContext(owner_id=owner_id, asset_id=asset_id, stage="delete"):
            previous = await self.record_store.delete_returning_previous(owner_id, asset_id)
            existed = previous is not None
            record_asset_deletion(existed)

            if not existed:
                logger.info("asset_delete_no_record")
                return False

            keys = AssetKeys.for_asset(owner_id, asset_id)
            for key in (keys.base, keys.raw, keys.hi_res):
                try:
                    await self.blob_store.delete(key)
                except TransientStoreError as e:
                    logger.error("asset_object_delete_failed", key=key, error=e.message)

            logger.info("asset_deleted")
            return True
