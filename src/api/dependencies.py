"""
FastAPI Dependencies for the Asset API

Provides dependency injection for:
- Settings (process-wide, built once)
- Blob store (singleton for the configured backend)
- Record store (per-request, over the shared session factory)
- Asset service (per-request)
- Owner id from the trusted X-Owner-Id header
"""

from fastapi import Depends, Header, HTTPException

from src.core.config import Settings, get_settings
from src.core.database import get_session_maker
from src.core.storage import IBlobStore, LocalBlobStore, get_storage
from src.modules.assets.repository import IAssetRecordStore, SqlAssetRecordStore
from src.modules.assets.service import AssetService


def get_app_settings() -> Settings:
    return get_settings()


def get_blob_store() -> IBlobStore:
    return get_storage()


def get_record_store() -> IAssetRecordStore:
    """Returns a record store over the process-wide session factory."""
    return SqlAssetRecordStore(get_session_maker())


def get_asset_service(
    settings: Settings = Depends(get_app_settings),
    blob_store: IBlobStore = Depends(get_blob_store),
    record_store: IAssetRecordStore = Depends(get_record_store),
) -> AssetService:
    return AssetService(settings, blob_store, record_store)


def get_local_blob_store(blob_store: IBlobStore = Depends(get_blob_store)) -> LocalBlobStore:
    """The direct-upload endpoint only exists for the local backend."""
    if not isinstance(blob_store, LocalBlobStore):
        raise HTTPException(status_code=404, detail="Direct uploads are served by the blob store")
    return blob_store


def get_owner_id(x_owner_id: str = Header(..., alias="X-Owner-Id")) -> str:
    """
    Owner id set by the upstream gateway after authentication.

    Must be usable as a single object key segment.
    """
    owner_id = x_owner_id.strip()
    if not owner_id or "/" in owner_id:
        raise HTTPException(status_code=400, detail="Invalid X-Owner-Id header")
    return owner_id
