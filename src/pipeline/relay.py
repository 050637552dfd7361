"""
SQS Notification Relay

Pull-side adapter for the queue that carries storage events:
receive a bounded batch (long polling), hand it to the consumer, then
delete the messages the consumer acknowledged. Messages reported for
redelivery are left alone and reappear after the visibility timeout;
the queue's redrive policy bounds how often.
"""

import asyncio
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from src.core.config import Settings
from src.core.exceptions import TransientStoreError
from src.core.logging import get_logger
from src.pipeline.consumer import BatchResult, NotificationConsumer

logger = get_logger(__name__)

SQS_MAX_BATCH = 10


class SqsNotificationRelay:
    def __init__(self, settings: Settings, client: Any = None):
        if not settings.NOTIFICATION_QUEUE_URL:
            raise ValueError("NOTIFICATION_QUEUE_URL config missing.")
        self.queue_url = settings.NOTIFICATION_QUEUE_URL
        self.batch_size = max(1, min(settings.NOTIFICATION_BATCH_SIZE, SQS_MAX_BATCH))
        self.wait_seconds = settings.NOTIFICATION_MAX_WAIT_SECONDS
        self.visibility_timeout = settings.NOTIFICATION_VISIBILITY_TIMEOUT_SECONDS
        if client is None:
            client = boto3.client(
                "sqs",
                region_name=settings.S3_REGION,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            )
        self._client = client

    async def _call(self, operation: str, func, **kwargs):
        try:
            return await asyncio.to_thread(func, **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.warning("relay_call_failed", operation=operation, error=str(e))
            raise TransientStoreError(f"SQS {operation} failed: {e}", store="relay") from e

    async def receive(self) -> List[Dict[str, Any]]:
        """Receive up to batch_size messages as {messageId, receiptHandle, body}."""
        response = await self._call(
            "receive_message",
            self._client.receive_message,
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=self.batch_size,
            WaitTimeSeconds=self.wait_seconds,
            VisibilityTimeout=self.visibility_timeout,
        )
        return [
            {
                "messageId": m["MessageId"],
                "receiptHandle": m["ReceiptHandle"],
                "body": m.get("Body", ""),
            }
            for m in response.get("Messages", [])
        ]

    async def acknowledge(self, messages: List[Dict[str, Any]], failed_message_ids: List[str]) -> int:
        """Delete every message not listed for redelivery. Returns the number deleted."""
        failed = set(failed_message_ids)
        done = [m for m in messages if m["messageId"] not in failed and m.get("receiptHandle")]

        deleted = 0
        for start in range(0, len(done), SQS_MAX_BATCH):
            chunk = done[start:start + SQS_MAX_BATCH]
            response = await self._call(
                "delete_message_batch",
                self._client.delete_message_batch,
                QueueUrl=self.queue_url,
                Entries=[
                    {"Id": str(i), "ReceiptHandle": m["receiptHandle"]}
                    for i, m in enumerate(chunk)
                ],
            )
            for failure in response.get("Failed", []):
                logger.warning("relay_delete_failed", entry=failure.get("Id"), error=failure.get("Message"))
            deleted += len(response.get("Successful", []))
        return deleted

    async def poll_once(self, consumer: NotificationConsumer) -> Optional[BatchResult]:
        """Receive one batch, run it through the consumer and acknowledge it."""
        messages = await self.receive()
        if not messages:
            return None

        result = await consumer.on_notification_batch(messages)
        deleted = await self.acknowledge(messages, result.failed_message_ids)
        logger.info(
            "relay_batch_handled",
            received=len(messages),
            deleted=deleted,
            redelivery=len(result.failed_message_ids),
        )
        return result
