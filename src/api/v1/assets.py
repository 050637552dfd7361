"""
Asset Endpoints

POST   /api/v1/assets                          - Create an asset and get an upload grant
POST   /api/v1/assets/{asset_id}/upload-grant  - Re-upload grant for an existing asset
GET    /api/v1/assets                          - List the owner's assets (paginated)
GET    /api/v1/assets/{asset_id}               - Get one asset with download URLs
DELETE /api/v1/assets/{asset_id}               - Delete an asset and its objects
GET    /api/v1/profile-asset                   - Get (creating if needed) the profile asset
POST   /api/v1/profile-asset/upload-grant      - Upload grant for the profile asset
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from src.api.dependencies import get_asset_service, get_owner_id
from src.core.logging import get_logger
from src.modules.assets.schemas import AssetListView, AssetView, UploadGrantView
from src.modules.assets.service import AssetService

logger = get_logger(__name__)
router = APIRouter()
profile_router = APIRouter()


class DeleteResponse(BaseModel):
    id: str
    deleted: bool


# =============================================================================
# Assets
# =============================================================================

@router.post("", response_model=UploadGrantView, status_code=201)
async def create_asset(
    owner_id: str = Depends(get_owner_id),
    service: AssetService = Depends(get_asset_service)
):
    """
    Create a new asset in PENDING_UPLOAD and return a direct upload grant.

    POST the returned `fields` plus a `file` part to `url` before `expiresAt`.
    """
    asset_id, grant = await service.issue_upload_grant(owner_id)
    return UploadGrantView.from_grant(asset_id, grant)


@router.post("/{asset_id}/upload-grant", response_model=UploadGrantView)
async def create_reupload_grant(
    asset_id: str,
    owner_id: str = Depends(get_owner_id),
    service: AssetService = Depends(get_asset_service)
):
    """Reset an existing asset to PENDING_UPLOAD and return a new upload grant."""
    asset_id, grant = await service.issue_upload_grant(owner_id, asset_id)
    return UploadGrantView.from_grant(asset_id, grant)


@router.get("", response_model=AssetListView)
async def list_assets(
    page_size: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None),
    with_urls: bool = Query(True),
    owner_id: str = Depends(get_owner_id),
    service: AssetService = Depends(get_asset_service)
):
    """List the owner's assets. Pass `nextCursor` back as `cursor` for the next page."""
    return await service.list_assets(owner_id, page_size=page_size, cursor=cursor, with_urls=with_urls)


@router.get("/{asset_id}", response_model=AssetView)
async def get_asset(
    asset_id: str,
    with_urls: bool = Query(True),
    owner_id: str = Depends(get_owner_id),
    service: AssetService = Depends(get_asset_service)
):
    return await service.get_asset(owner_id, asset_id, with_urls=with_urls)


@router.delete("/{asset_id}", response_model=DeleteResponse)
async def delete_asset(
    asset_id: str,
    owner_id: str = Depends(get_owner_id),
    service: AssetService = Depends(get_asset_service)
):
    """Delete the asset record, then its base, raw and hi-res objects."""
    deleted = await service.delete_asset(owner_id, asset_id)
    return DeleteResponse(id=asset_id, deleted=deleted)


# =============================================================================
# Profile Asset
# =============================================================================

@profile_router.get("", response_model=AssetView)
async def get_profile_asset(
    with_urls: bool = Query(True),
    owner_id: str = Depends(get_owner_id),
    service: AssetService = Depends(get_asset_service)
):
    """Return the owner's profile asset, creating the record on first use."""
    await service.ensure_profile_asset(owner_id)
    return await service.get_asset(owner_id, owner_id, with_urls=with_urls)


@profile_router.post("/upload-grant", response_model=UploadGrantView)
async def create_profile_upload_grant(
    owner_id: str = Depends(get_owner_id),
    service: AssetService = Depends(get_asset_service)
):
    await service.ensure_profile_asset(owner_id)
    asset_id, grant = await service.issue_upload_grant(owner_id, owner_id)
    return UploadGrantView.from_grant(asset_id, grant)
