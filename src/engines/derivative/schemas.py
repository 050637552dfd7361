from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class ImageMetadata(BaseModel):
    """Intrinsic properties of a stored image."""
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    format: str  # lower-case Pillow format name: jpeg, png, webp, ...


class DerivativeDecision(BaseModel):
    """Output of the derivative policy."""
    target_width: int
    target_height: int
    needs_downscale: bool


class IngestOutcome(BaseModel):
    """What one ingestion run produced for an asset.

    `metadata` describes the base-resolution object; `hi_res_metadata` the
    preserved original, present only when a downscale happened.
    """
    is_high_resolution_available: bool
    metadata: ImageMetadata
    hi_res_metadata: Optional[ImageMetadata] = None
    recovered: bool = False  # re-derived from stored objects after a partial run

    def to_record_fields(self) -> Dict[str, Any]:
        return {
            "is_high_resolution_available": self.is_high_resolution_available,
            "image_metadata": self.metadata.model_dump(),
            "hi_res_metadata": self.hi_res_metadata.model_dump() if self.hi_res_metadata else None,
        }
