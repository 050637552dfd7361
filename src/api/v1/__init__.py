"""
API v1 Router Module - Asset Ingestion Pipeline

All v1 endpoints are prefixed with /api/v1/

- /api/v1/assets/*        - Owner asset lifecycle (grants, read, delete)
- /api/v1/profile-asset/* - The owner's profile asset
- /api/v1/uploads         - Direct upload target (local blob store only)
- /api/v1/metrics         - Prometheus scrape endpoint
"""

from fastapi import APIRouter

from src.api.v1.assets import router as assets_router, profile_router
from src.api.v1.uploads import router as uploads_router
from src.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(assets_router, prefix="/assets", tags=["assets"])
api_v1_router.include_router(profile_router, prefix="/profile-asset", tags=["assets"])
api_v1_router.include_router(uploads_router, prefix="/uploads", tags=["uploads"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
