"""
Local Direct-Upload Endpoint

POST /api/v1/uploads - Upload target for grants minted by the local blob store

Stands in for the object store's POST endpoint in development: checks the
grant, stores the object under its raw key and emits the storage event to
the ingestion task, as the relay would.
"""

import json
import uuid

from fastapi import APIRouter, Depends, File, Form, UploadFile

from src.api.dependencies import get_local_blob_store
from src.core.logging import get_logger
from src.core.storage import LocalBlobStore
from src.pipeline.tasks import process_notification_batch

logger = get_logger(__name__)
router = APIRouter()


@router.post("", status_code=201)
async def upload_object(
    key: str = Form(...),
    expires: str = Form(...),
    max_bytes: str = Form(..., alias="max-bytes"),
    signature: str = Form(...),
    file: UploadFile = File(...),
    blob_store: LocalBlobStore = Depends(get_local_blob_store)
):
    data = await file.read()
    event = await blob_store.accept_upload(
        {"key": key, "expires": expires, "max-bytes": max_bytes, "signature": signature},
        data
    )

    message = {"messageId": uuid.uuid4().hex, "body": json.dumps({"Records": [event]})}
    task = process_notification_batch.delay([message])
    logger.info("upload_event_dispatched", key=key, task_id=task.id)

    return {"key": key, "size": len(data), "task_id": task.id}
