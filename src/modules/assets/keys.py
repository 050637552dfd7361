"""
Object key layout shared by the upload-grant issuer and the ingestion consumer.

    owner/{ownerId}/raw/{assetId}     uploaded, not yet processed
    owner/{ownerId}/base/{assetId}    base resolution (what viewers get)
    owner/{ownerId}/hiRes/{assetId}   preserved original, only after a downscale
"""

import re
from typing import NamedTuple, Optional, Tuple
from urllib.parse import unquote_plus

OWNER_SEGMENT = "owner"
RAW_PREFIX = "raw"
BASE_PREFIX = "base"
HI_RES_PREFIX = "hiRes"

_RAW_KEY_PATTERN = re.compile(
    rf"^/?{OWNER_SEGMENT}/(?P<owner_id>[^/]+)/{RAW_PREFIX}/(?P<asset_id>[^/]+)$"
)


class AssetKeys(NamedTuple):
    raw: str
    base: str
    hi_res: str

    @classmethod
    def for_asset(cls, owner_id: str, asset_id: str) -> "AssetKeys":
        return cls(
            raw=object_key(owner_id, RAW_PREFIX, asset_id),
            base=object_key(owner_id, BASE_PREFIX, asset_id),
            hi_res=object_key(owner_id, HI_RES_PREFIX, asset_id),
        )


def object_key(owner_id: str, prefix: str, asset_id: str) -> str:
    if prefix not in (RAW_PREFIX, BASE_PREFIX, HI_RES_PREFIX):
        raise ValueError(f"Unknown key prefix: {prefix}")
    return f"{OWNER_SEGMENT}/{owner_id}/{prefix}/{asset_id}"


def decode_event_key(encoded_key: str) -> str:
    """Decode a key as carried in storage events ('+' is a space, then %XX)."""
    return unquote_plus(encoded_key)


def parse_raw_key(key: str) -> Optional[Tuple[str, str]]:
    """Return (owner_id, asset_id) for a decoded raw-prefix key, else None."""
    match = _RAW_KEY_PATTERN.match(key)
    if not match:
        return None
    return match.group("owner_id"), match.group("asset_id")
