from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field

from src.core.storage import UploadGrant


class AssetUrls(BaseModel):
    """Download URLs for an asset's objects."""
    url: Optional[str] = None
    hiResUrl: Optional[str] = None


class AssetView(BaseModel):
    """Asset as returned to its owner."""
    id: str
    ownerId: str
    status: str
    isHighResolutionAvailable: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    hiResMetadata: Optional[Dict[str, Any]] = None
    lastModifiedTime: Optional[str] = None
    urls: Optional[AssetUrls] = None


class AssetListView(BaseModel):
    items: List[AssetView]
    nextCursor: Optional[str] = None


class UploadGrantView(BaseModel):
    """Result of issuing an upload grant."""
    assetId: str
    url: str
    fields: Dict[str, str]
    expiresAt: datetime

    @classmethod
    def from_grant(cls, asset_id: str, grant: UploadGrant) -> "UploadGrantView":
        return cls(assetId=asset_id, url=grant.url, fields=grant.fields, expiresAt=grant.expires_at)
