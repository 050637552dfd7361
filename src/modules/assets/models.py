"""
Asset Record Model with Lifecycle Status Tracking

Tracks an uploaded asset from upload grant to usable artifact:
- Lifecycle status with an explicit transition table
- Base and high resolution image metadata
- Entity-type discriminant for owner-scoped listing
"""

from enum import Enum
from sqlalchemy import DateTime, Index
from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, Dict, Any, FrozenSet, Tuple
from datetime import datetime, timezone

from src.core.exceptions import InvalidStatusTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive timestamp (SQLite hands columns back without an offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AssetStatus(str, Enum):
    """Asset lifecycle states."""
    PENDING_UPLOAD = "PENDING_UPLOAD"  # Grant issued, ingestion not finished
    UPLOADED = "UPLOADED"              # Derivatives written for this upload cycle


class EntityType(str, Enum):
    """Record discriminant. Owner listing reads the (entity_type, owner_id) index."""
    ASSET = "ASSET"


# Every state change the pipeline may make. Re-asserting the current state
# is not a transition and is always accepted.
ALLOWED_TRANSITIONS: FrozenSet[Tuple[AssetStatus, AssetStatus]] = frozenset({
    (AssetStatus.PENDING_UPLOAD, AssetStatus.UPLOADED),
    (AssetStatus.UPLOADED, AssetStatus.PENDING_UPLOAD),
})


def transition(current: str, target: AssetStatus) -> AssetStatus:
    """
    Validate a status change against the transition table.

    Returns the target status; raises InvalidStatusTransitionError for a
    change that is not in the table, including unknown stored values.
    """
    try:
        current_status = AssetStatus(current)
    except ValueError:
        raise InvalidStatusTransitionError(str(current), target.value)

    if current_status == target:
        return target
    if (current_status, target) not in ALLOWED_TRANSITIONS:
        raise InvalidStatusTransitionError(current_status.value, target.value)
    return target


class AssetRecord(SQLModel, table=True):
    """
    Asset record keyed by (owner_id, asset_id).

    asset_id == owner_id marks the owner's profile asset.

    Stores:
    - Lifecycle status and hi-res availability
    - `image_metadata`: {width, height, format} of the base object, or {}
    - `hi_res_metadata`: same shape for the preserved original, only after a downscale
    """
    __tablename__ = "asset_records"
    __table_args__ = (
        Index("ix_asset_records_entity_owner", "entity_type", "owner_id"),
    )

    # Composite Primary Key
    owner_id: str = Field(primary_key=True)
    asset_id: str = Field(primary_key=True)

    # Discriminant
    entity_type: str = Field(default=EntityType.ASSET.value)

    # Lifecycle
    status: str = Field(default=AssetStatus.PENDING_UPLOAD.value)
    is_high_resolution_available: bool = Field(default=False)

    # Image metadata
    image_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    hi_res_metadata: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    # Timestamps
    created_time: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    last_modified_time: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    @property
    def is_profile_asset(self) -> bool:
        return self.asset_id == self.owner_id

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        response = {
            "id": self.asset_id,
            "ownerId": self.owner_id,
            "status": self.status,
            "isHighResolutionAvailable": self.is_high_resolution_available,
            "metadata": self.image_metadata or {},
            "lastModifiedTime": as_utc(self.last_modified_time).isoformat() if self.last_modified_time else None,
        }
        if self.hi_res_metadata:
            response["hiResMetadata"] = self.hi_res_metadata
        return response
