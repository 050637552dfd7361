"""
Prometheus Metrics for Observability

Tracks ingestion outcomes, stage latency, derivative writes, upload grants
and HTTP traffic. Exposes /api/v1/metrics for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Per-stage latency (fetch, decode, derive, store, commit)
pipeline_latency_seconds = Histogram(
    "asset_pipeline_latency_seconds",
    "Time spent in each ingestion stage",
    labelnames=["stage", "status"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Ingestion outcomes per storage record
ingestion_records_total = Counter(
    "asset_ingestion_records_total",
    "Storage records seen by the ingestion consumer",
    labelnames=["outcome"]
)

# Derivative objects written
derivatives_written_total = Counter(
    "asset_derivatives_written_total",
    "Derivative objects written by kind",
    labelnames=["kind"]  # base_copy, base_resized, hi_res
)

# Relay messages
relay_messages_total = Counter(
    "asset_relay_messages_total",
    "Relay messages handled",
    labelnames=["result"]  # acked, redelivery
)

# Upload grants
upload_grants_total = Counter(
    "asset_upload_grants_total",
    "Upload grants issued",
    labelnames=["kind"]  # new, reupload
)

# Deletions
asset_deletions_total = Counter(
    "asset_deletions_total",
    "Owner-initiated asset deletions",
    labelnames=["existed"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "asset_pipeline_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("decode"):
            # do work
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        pipeline_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_ingestion_outcome(outcome: str):
    """Record the outcome of one storage record (uploaded, skipped_*, failed, ...)."""
    ingestion_records_total.labels(outcome=outcome).inc()


def record_derivative_written(kind: str):
    derivatives_written_total.labels(kind=kind).inc()


def record_relay_message(result: str):
    relay_messages_total.labels(result=result).inc()


def record_upload_grant(kind: str):
    upload_grants_total.labels(kind=kind).inc()


def record_asset_deletion(existed: bool):
    asset_deletions_total.labels(existed=str(existed).lower()).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
