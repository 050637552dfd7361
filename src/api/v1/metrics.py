"""
Metrics Endpoint

GET /api/v1/metrics - Prometheus metrics endpoint
"""

from fastapi import APIRouter, Response

from src.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter()


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.
    
    Exposes:
    - asset_ingestion_records_total (per outcome)
    - asset_pipeline_latency_seconds (per stage)
    - asset_derivatives_written_total
    - asset_upload_grants_total, asset_deletions_total
    - http_requests_total
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

