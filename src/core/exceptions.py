"""
Global Exception Handling

Error taxonomy for the asset pipeline and structured error responses for
the HTTP surface.

- AssetNotFoundError: record absent where it must pre-exist
- MalformedInputError: bad notification, object key or image
- TransientStoreError: blob/record store call failed; retried by redelivery
- PolicyViolationError: upload over the size cap (enforced by the blob store)
- InvalidStatusTransitionError: lifecycle transition not in the table
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.core.logging import get_logger, owner_id_var, asset_id_var

logger = get_logger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Custom Exceptions
# =============================================================================

class AssetPipelineError(Exception):
    """Base exception for the asset pipeline."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        owner_id: Optional[str] = None,
        asset_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.owner_id = owner_id or owner_id_var.get()
        self.asset_id = asset_id or asset_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class AssetNotFoundError(AssetPipelineError):
    """Raised when an asset record must exist but does not."""

    def __init__(self, owner_id: str, asset_id: str, **kwargs):
        super().__init__(
            f"Asset not found: {owner_id}/{asset_id}",
            code=404,
            owner_id=owner_id,
            asset_id=asset_id,
            **kwargs
        )


class MalformedInputError(AssetPipelineError):
    """Raised for unparsable notifications, unknown key shapes or bad images."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class TransientStoreError(AssetPipelineError):
    """Raised when a blob or record store call fails (timeout, throttling)."""

    def __init__(self, message: str, store: str, key: Optional[str] = None, **kwargs):
        super().__init__(message, code=503, **kwargs)
        self.details["store"] = store
        if key is not None:
            self.details["key"] = key


class BlobNotFoundError(AssetPipelineError):
    """Raised by the blob store when a key holds no object."""

    def __init__(self, key: str, **kwargs):
        super().__init__(f"Object not found: {key}", code=404, **kwargs)
        self.details["key"] = key


class PolicyViolationError(AssetPipelineError):
    """Raised when an upload exceeds the configured size cap."""

    def __init__(self, message: str, max_bytes: int, **kwargs):
        super().__init__(message, code=413, **kwargs)
        self.details["max_bytes"] = max_bytes


class InvalidStatusTransitionError(AssetPipelineError):
    """Raised when an asset status change is not in the transition table."""

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(
            f"Invalid asset status transition: {current} -> {target}",
            code=409,
            **kwargs
        )
        self.details["current"] = current
        self.details["target"] = target


# =============================================================================
# Exception Handler Middleware
# =============================================================================

def _error_body(exc: AssetPipelineError) -> Dict[str, Any]:
    return {
        "error": exc.message,
        "code": exc.code,
        "owner_id": exc.owner_id,
        "asset_id": exc.asset_id,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": _timestamp()
    }


class GlobalExceptionMiddleware(BaseHTTPMiddleware):
    """
    Global exception handler middleware.

    Catches all exceptions and returns structured JSON responses.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as exc:
            return self._handle_exception(request, exc)

    def _handle_exception(self, request: Request, exc: Exception) -> JSONResponse:
        """Convert exception to structured JSON response."""
        if isinstance(exc, AssetPipelineError):
            error_response = _error_body(exc)
            status_code = exc.code

        elif isinstance(exc, HTTPException):
            error_response = {
                "error": exc.detail,
                "code": exc.status_code,
                "timestamp": _timestamp()
            }
            status_code = exc.status_code

        else:
            error_response = {
                "error": "Internal server error",
                "code": 500,
                "timestamp": _timestamp()
            }
            status_code = 500

            logger.error(
                "unhandled_exception",
                error=str(exc),
                error_type=type(exc).__name__,
                traceback=traceback.format_exc()
            )

        return JSONResponse(
            status_code=status_code,
            content=error_response
        )


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(AssetPipelineError)
    async def asset_pipeline_exception_handler(request: Request, exc: AssetPipelineError):
        log = logger.warning if exc.code < 500 else logger.error
        log(
            "asset_pipeline_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content=_error_body(exc)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "code": 500,
                "timestamp": _timestamp()
            }
        )
