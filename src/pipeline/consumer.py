"""
Notification Consumer

Entry point for a batch of relay messages. Each message body is a JSON
storage-event envelope ({"Records": [...]}) or a single bare record.

A record is ingested only when:
- its event name is a create variant (ObjectCreated:*, optional "s3:" prefix)
- its key, once decoded, is an owner/{ownerId}/raw/{assetId} key

Malformed bodies and records are logged and skipped. Records for the same
asset within a batch are ingested once. Failures are isolated per asset;
message ids whose asset hit a transient failure or the per-record timeout
are reported back for redelivery.
"""

import json
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.core.config import Settings
from src.core.exceptions import AssetPipelineError
from src.core.logging import get_logger, LogContext
from src.core.metrics import record_ingestion_outcome, record_relay_message
from src.modules.assets.keys import decode_event_key, parse_raw_key
from src.pipeline.ingestion import IngestionService

logger = get_logger(__name__)

CREATE_EVENT_PREFIX = "ObjectCreated:"


@dataclass
class BatchResult:
    """Per-batch summary; failed_message_ids must be redelivered."""
    failed_message_ids: List[str] = field(default_factory=list)
    processed: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed_message_ids

    def to_partial_batch_response(self) -> Dict[str, Any]:
        """SQS partial batch response shape."""
        return {
            "batchItemFailures": [
                {"itemIdentifier": message_id} for message_id in self.failed_message_ids
            ]
        }


def _parse_body(body: Any) -> Any:
    if isinstance(body, (str, bytes, bytearray)):
        return json.loads(body)
    return body


class NotificationConsumer:
    def __init__(self, settings: Settings, ingestion: IngestionService):
        self.ingestion = ingestion
        self.max_concurrency = max(1, settings.INGEST_MAX_CONCURRENCY)
        self.record_timeout = settings.INGEST_RECORD_TIMEOUT_SECONDS

    def _records(self, message: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Unwrap message -> envelope -> records. Malformed input yields no records."""
        message_id = message.get("messageId")
        try:
            envelope = _parse_body(message.get("body"))
        except (ValueError, TypeError) as e:
            logger.warning("notification_body_malformed", message_id=message_id, error=str(e))
            record_ingestion_outcome("skipped_malformed")
            return []

        if isinstance(envelope, dict) and "Records" in envelope:
            records = envelope["Records"]
        elif isinstance(envelope, dict) and "eventName" in envelope:
            records = [envelope]
        elif isinstance(envelope, dict):
            # s3:TestEvent and other envelopes without records
            logger.info("notification_without_records", message_id=message_id)
            return []
        else:
            records = None

        if not isinstance(records, list):
            logger.warning("notification_body_malformed", message_id=message_id, error="no record list")
            record_ingestion_outcome("skipped_malformed")
            return []

        valid = []
        for record in records:
            if isinstance(record, dict):
                valid.append(record)
            else:
                logger.warning("notification_record_malformed", message_id=message_id)
                record_ingestion_outcome("skipped_malformed")
        return valid

    def _target(self, record: Dict[str, Any]) -> Optional[Tuple[str, str]]:
        """(owner_id, asset_id) for a record that should be ingested, else None."""
        event_name = record.get("eventName")
        if not isinstance(event_name, str):
            logger.warning("notification_record_malformed", error="missing eventName")
            record_ingestion_outcome("skipped_malformed")
            return None
        if event_name.startswith("s3:"):
            event_name = event_name[len("s3:"):]
        if not event_name.startswith(CREATE_EVENT_PREFIX):
            logger.debug("ingestion_record_ignored", reason="event", event_name=event_name)
            record_ingestion_outcome("ignored_event")
            return None

        s3_object = record.get("s3", {}).get("object", {}) if isinstance(record.get("s3"), dict) else {}
        encoded_key = s3_object.get("key") if isinstance(s3_object, dict) else None
        if encoded_key is None:
            encoded_key = record.get("key")
        if not isinstance(encoded_key, str):
            logger.warning("notification_record_malformed", error="missing object key")
            record_ingestion_outcome("skipped_malformed")
            return None

        key = decode_event_key(encoded_key)
        target = parse_raw_key(key)
        if target is None:
            logger.debug("ingestion_record_ignored", reason="key", key=key)
            record_ingestion_outcome("ignored_key")
        return target

    async def _ingest_one(self, semaphore: asyncio.Semaphore, owner_id: str, asset_id: str) -> bool:
        """Ingest one asset. Returns False when the record must be redelivered."""
        async with semaphore:
            with LogContext(owner_id=owner_id, asset_id=asset_id, stage="ingest"):
                try:
                    outcome = await asyncio.wait_for(
                        self.ingestion.ingest(owner_id, asset_id),
                        timeout=self.record_timeout
                    )
                except asyncio.TimeoutError:
                    logger.error("ingestion_record_timeout", timeout_seconds=self.record_timeout)
                    record_ingestion_outcome("timeout")
                    return False
                except AssetPipelineError as e:
                    if e.code < 500:
                        logger.warning("ingestion_record_skipped", error=e.message, code=e.code)
                        record_ingestion_outcome("skipped_malformed")
                        return True
                    logger.error("ingestion_record_failed", error=e.message, details=e.details)
                    record_ingestion_outcome("failed_transient")
                    return False
                except Exception as e:
                    logger.exception("ingestion_record_failed", error=str(e), error_type=type(e).__name__)
                    record_ingestion_outcome("failed")
                    return False

                if outcome is None:
                    record_ingestion_outcome("noop")
                else:
                    record_ingestion_outcome("recovered" if outcome.recovered else "uploaded")
                return True

    async def on_notification_batch(self, messages: Iterable[Dict[str, Any]]) -> BatchResult:
        """
        Ingest every raw upload named in a batch of relay messages.

        Never raises for per-record problems; the returned BatchResult lists
        the message ids that need redelivery.
        """
        messages = [m for m in messages if isinstance(m, dict)]
        targets: Dict[Tuple[str, str], List[str]] = {}
        result = BatchResult()

        for message in messages:
            message_id = message.get("messageId")
            for record in self._records(message):
                target = self._target(record)
                if target is None:
                    result.skipped += 1
                    continue
                targets.setdefault(target, [])
                if message_id is not None and message_id not in targets[target]:
                    targets[target].append(message_id)

        logger.info("notification_batch_received", messages=len(messages), assets=len(targets))

        semaphore = asyncio.Semaphore(self.max_concurrency)
        pairs = list(targets)
        succeeded = await asyncio.gather(
            *(self._ingest_one(semaphore, owner_id, asset_id) for owner_id, asset_id in pairs)
        )

        failed = set()
        for pair, ok in zip(pairs, succeeded):
            if ok:
                result.processed += 1
            else:
                failed.update(targets[pair])

        for message in messages:
            message_id = message.get("messageId")
            if message_id in failed and message_id not in result.failed_message_ids:
                result.failed_message_ids.append(message_id)
                record_relay_message("redelivery")
            else:
                record_relay_message("acked")

        logger.info(
            "notification_batch_completed",
            processed=result.processed,
            skipped=result.skipped,
            failed_messages=len(result.failed_message_ids),
        )
        return result
