"""
Celery Tasks for Asset Ingestion

- process_notification_batch: push-style entry; runs one batch of relay
  messages, re-queues the failed ones with backoff and returns the SQS
  partial batch response
- poll_notification_relay: beat-scheduled pull from the SQS relay

Each task run gets its own event loop and its own database engine.
"""

import asyncio
import traceback
from typing import Any, Awaitable, Callable, Dict, List, TypeVar

from celery.exceptions import MaxRetriesExceededError

from src.core.celery_app import celery_app
from src.core.config import Settings, get_settings
from src.core.database import build_engine, build_session_maker, create_db_and_tables
from src.core.logging import get_logger
from src.core.storage import StorageFactory
from src.modules.assets.repository import SqlAssetRecordStore
from src.pipeline.consumer import NotificationConsumer
from src.pipeline.ingestion import IngestionService
from src.pipeline.relay import SqsNotificationRelay

logger = get_logger(__name__)

T = TypeVar("T")


def build_consumer(settings: Settings, session_maker) -> NotificationConsumer:
    """Wire the ingestion consumer from settings."""
    blob_store = StorageFactory.get_storage(settings)
    record_store = SqlAssetRecordStore(session_maker)
    ingestion = IngestionService(settings, blob_store, record_store)
    return NotificationConsumer(settings, ingestion)


async def _with_consumer(settings: Settings, func: Callable[[NotificationConsumer], Awaitable[T]]) -> T:
    engine = build_engine(settings.DATABASE_URL)
    try:
        await create_db_and_tables(engine)
        consumer = build_consumer(settings, build_session_maker(engine))
        return await func(consumer)
    finally:
        await engine.dispose()


def _run(coro: Awaitable[T]) -> T:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.process_notification_batch",
    max_retries=3,
    default_retry_delay=5,
    acks_late=True
)
def process_notification_batch(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Ingest one batch of relay messages ({messageId, body}).

    Returns:
        {"batchItemFailures": [{"itemIdentifier": messageId}, ...]}
    """
    settings = get_settings()
    logger.info("task_notification_batch_started", messages=len(messages))

    async def _process(consumer: NotificationConsumer):
        return await consumer.on_notification_batch(messages)

    try:
        result = _run(_with_consumer(settings, _process))
    except Exception as e:
        logger.error(
            "task_notification_batch_error",
            error=str(e),
            traceback=traceback.format_exc()
        )
        try:
            self.retry(exc=e, countdown=5 * (2 ** self.request.retries))
        except MaxRetriesExceededError:
            logger.error("task_notification_batch_gave_up", messages=len(messages))
            raise

    if result.failed_message_ids:
        failed = set(result.failed_message_ids)
        retry_messages = [m for m in messages if m.get("messageId") in failed]
        logger.warning(
            "task_notification_batch_partial_failure",
            failed=len(retry_messages),
            attempt=self.request.retries + 1
        )
        try:
            # Only the failed messages go round again.
            self.retry(args=[retry_messages], countdown=5 * (2 ** self.request.retries))
        except MaxRetriesExceededError:
            logger.error("task_notification_batch_gave_up", messages=len(retry_messages))

    return result.to_partial_batch_response()


@celery_app.task(
    bind=True,
    name="src.pipeline.tasks.poll_notification_relay",
    acks_late=True,
    ignore_result=True
)
def poll_notification_relay(self) -> Dict[str, Any]:
    """Pull one batch from the SQS relay, ingest it and delete acknowledged messages."""
    settings = get_settings()
    if not settings.NOTIFICATION_QUEUE_URL:
        logger.info("relay_poll_skipped", reason="no queue configured")
        return {"received": 0}
    relay = SqsNotificationRelay(settings)

    result = _run(_with_consumer(settings, relay.poll_once))
    if result is None:
        return {"received": 0}
    return {
        "processed": result.processed,
        "skipped": result.skipped,
        "redelivery": len(result.failed_message_ids),
    }
