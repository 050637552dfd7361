"""
Derivative Generation for One Asset

ingest(owner_id, asset_id) turns the raw upload into its derivatives:

1. Fetch raw bytes (absent -> already handled, see _recover)
2. Decode and read (width, height, format)
3. Run the derivative policy
4. No downscale: copy raw -> base, then drop a stale hiRes from an earlier cycle
   Downscale:    copy raw -> hiRes (overwriting any stale one), resize, put resized at base
5. Delete raw
6. Conditional status write (record must still exist)

A derivative always lands before raw is deleted, so every crash point
leaves either the raw object or a derivative behind.
"""

import asyncio
from datetime import timedelta
from typing import Optional

from src.core.config import Settings
from src.core.exceptions import AssetNotFoundError, BlobNotFoundError
from src.core.logging import get_logger, LogContext, with_logging
from src.core.metrics import track_stage_latency, record_derivative_written
from src.core.storage import IBlobStore
from src.engines.derivative import imaging
from src.engines.derivative.policy import decide
from src.engines.derivative.schemas import IngestOutcome
from src.modules.assets.keys import AssetKeys
from src.modules.assets.models import AssetRecord, AssetStatus, as_utc, transition
from src.modules.assets.repository import IAssetRecordStore

logger = get_logger(__name__)

# Blob stores report modification times at one-second granularity (S3).
MODIFIED_TIME_TOLERANCE = timedelta(seconds=1)


class IngestionService:
    """Writes derivatives for uploaded assets and commits the outcome."""

    def __init__(self, settings: Settings, blob_store: IBlobStore, record_store: IAssetRecordStore):
        self.threshold = settings.IMAGE_DOWNSCALE_THRESHOLD_PX
        self.blob_store = blob_store
        self.record_store = record_store

    @with_logging("ingest")
    async def ingest(self, owner_id: str, asset_id: str) -> Optional[IngestOutcome]:
        """
        Process the raw object of one asset.

        Returns the committed outcome, or None when there was nothing to do
        (already processed, no record, or the record was deleted mid-flight).

        Raises:
            MalformedInputError: raw object is not a decodable image
            TransientStoreError: a blob or record store call failed
        """
        keys = AssetKeys.for_asset(owner_id, asset_id)

        with LogContext(owner_id=owner_id, asset_id=asset_id):
            record = await self.record_store.get(owner_id, asset_id)

            try:
                with track_stage_latency("fetch"):
                    raw = await self.blob_store.get(keys.raw)
            except BlobNotFoundError:
                return await self._recover(record, keys)

            if record is None:
                # Upload without a grant, or the asset was deleted before we ran.
                logger.warning("ingestion_orphan_raw_removed", key=keys.raw)
                await self.blob_store.delete(keys.raw)
                return None

            transition(record.status, AssetStatus.UPLOADED)

            with track_stage_latency("decode"):
                original = await asyncio.to_thread(imaging.probe, raw)

            decision = decide(original.width, original.height, self.threshold)
            logger.info(
                "derivative_policy_decided",
                width=original.width,
                height=original.height,
                format=original.format,
                needs_downscale=decision.needs_downscale,
                target_width=decision.target_width,
                target_height=decision.target_height,
            )

            with track_stage_latency("derive"):
                if not decision.needs_downscale:
                    await self.blob_store.copy(keys.raw, keys.base)
                    record_derivative_written("base_copy")
                    # A hi-res object left by an earlier upload cycle no longer applies.
                    await self.blob_store.delete(keys.hi_res)
                    outcome = IngestOutcome(is_high_resolution_available=False, metadata=original)
                else:
                    await self.blob_store.copy(keys.raw, keys.hi_res)
                    record_derivative_written("hi_res")
                    resized, resized_meta = await asyncio.to_thread(
                        imaging.resize, raw, decision.target_width, decision.target_height
                    )
                    await self.blob_store.put(
                        keys.base, resized, content_type=imaging.content_type_for(resized_meta.format)
                    )
                    record_derivative_written("base_resized")
                    outcome = IngestOutcome(
                        is_high_resolution_available=True,
                        metadata=resized_meta,
                        hi_res_metadata=original,
                    )

            with track_stage_latency("store"):
                await self.blob_store.delete(keys.raw)

            return await self._commit(owner_id, asset_id, keys, outcome)

    async def _commit(
        self,
        owner_id: str,
        asset_id: str,
        keys: AssetKeys,
        outcome: IngestOutcome
    ) -> Optional[IngestOutcome]:
        try:
            with track_stage_latency("commit"):
                await self.record_store.conditional_update(
                    owner_id,
                    asset_id,
                    {"status": AssetStatus.UPLOADED.value, **outcome.to_record_fields()},
                )
        except AssetNotFoundError:
            # Owner deleted the asset while we were writing; drop what we wrote.
            logger.info("ingestion_record_deleted_midflight")
            for key in (keys.base, keys.hi_res, keys.raw):
                await self.blob_store.delete(key)
            return None

        logger.info(
            "ingestion_committed",
            is_high_resolution_available=outcome.is_high_resolution_available,
            recovered=outcome.recovered,
        )
        return outcome

    async def _recover(self, record: Optional[AssetRecord], keys: AssetKeys) -> Optional[IngestOutcome]:
        """
        Raw is gone: either a duplicate delivery after success, or a crash
        between deleting raw and writing the status.

        The outcome is re-derived only when the record is still pending and
        the base object was written after the record was last modified.
        """
        if record is None or record.status != AssetStatus.PENDING_UPLOAD.value:
            logger.info("ingestion_already_processed")
            return None

        base_info = await self.blob_store.head(keys.base)
        since = as_utc(record.last_modified_time) - MODIFIED_TIME_TOLERANCE
        if base_info is None or base_info.last_modified < since:
            logger.info("ingestion_nothing_to_recover")
            return None

        with track_stage_latency("decode"):
            base_meta = await asyncio.to_thread(imaging.probe, await self.blob_store.get(keys.base))

            hi_res_meta = None
            hi_res_info = await self.blob_store.head(keys.hi_res)
            if hi_res_info is not None and hi_res_info.last_modified >= since:
                hi_res_meta = await asyncio.to_thread(imaging.probe, await self.blob_store.get(keys.hi_res))

        logger.warning("ingestion_recovering_uncommitted_outcome", hi_res=hi_res_meta is not None)
        outcome = IngestOutcome(
            is_high_resolution_available=hi_res_meta is not None,
            metadata=base_meta,
            hi_res_metadata=hi_res_meta,
            recovered=True,
        )
        return await self._commit(record.owner_id, record.asset_id, keys, outcome)
