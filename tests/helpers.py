import io
import json
from typing import Optional

from PIL import Image


def make_image(width: int, height: int, fmt: str = "JPEG", color=(200, 40, 40), **save_kwargs) -> bytes:
    """Encode a solid-color test image."""
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = color + (255,) if mode == "RGBA" else color
    buffer = io.BytesIO()
    Image.new(mode, (width, height), fill).save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_message(message_id: str, key: str, event_name: str = "ObjectCreated:Put", body: Optional[str] = None) -> dict:
    """Relay message carrying one S3 event record for `key`."""
    if body is None:
        body = json.dumps({"Records": [{"eventName": event_name, "s3": {"object": {"key": key}}}]})
    return {"messageId": message_id, "receiptHandle": f"rh-{message_id}", "body": body}
