"""
Assets Module

Asset records, their lifecycle state machine, object key layout and the
request-side asset service.
"""

from src.modules.assets.models import AssetRecord, AssetStatus, EntityType

__all__ = ["AssetRecord", "AssetStatus", "EntityType"]
