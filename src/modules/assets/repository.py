"""
Asset Record Store

Narrow record contract over the asset_records table:
- get / put (upsert)
- conditional_update: only applies if the record still exists
- delete_returning_previous: delete and hand back what was there
- query_by_owner: keyset-paginated listing on the (entity_type, owner_id) index

The conditional update is the pipeline's only point of mutual exclusion:
a status write racing an owner's delete either lands before the delete or
is rejected with AssetNotFoundError.
"""

import base64
import binascii
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select

from src.core.exceptions import AssetNotFoundError, MalformedInputError, TransientStoreError
from src.core.logging import get_logger
from src.modules.assets.models import AssetRecord, EntityType, utcnow

logger = get_logger(__name__)


@dataclass
class AssetPage:
    """One page of an owner's assets."""
    items: List[AssetRecord]
    next_cursor: Optional[str] = None


def encode_cursor(asset_id: str) -> str:
    return base64.urlsafe_b64encode(asset_id.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> str:
    try:
        asset_id = base64.b64decode(cursor.encode("ascii"), altchars=b"-_", validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        raise MalformedInputError(f"Invalid page cursor: {cursor}")
    if not asset_id:
        raise MalformedInputError(f"Invalid page cursor: {cursor}")
    return asset_id


class IAssetRecordStore(ABC):
    """Interface for asset record persistence."""

    @abstractmethod
    async def get(self, owner_id: str, asset_id: str) -> Optional[AssetRecord]:
        pass

    @abstractmethod
    async def put(self, owner_id: str, asset_id: str, fields: Dict[str, Any]) -> AssetRecord:
        """Create or overwrite the given fields."""
        pass

    @abstractmethod
    async def conditional_update(self, owner_id: str, asset_id: str, fields: Dict[str, Any]) -> AssetRecord:
        """Update fields of an existing record. Raises AssetNotFoundError if absent."""
        pass

    @abstractmethod
    async def delete_returning_previous(self, owner_id: str, asset_id: str) -> Optional[AssetRecord]:
        pass

    @abstractmethod
    async def query_by_owner(self, owner_id: str, page_size: int, cursor: Optional[str] = None) -> AssetPage:
        pass


class SqlAssetRecordStore(IAssetRecordStore):
    """SQLModel/SQLAlchemy implementation (SQLite via aiosqlite, or PostgreSQL)."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    @asynccontextmanager
    async def _session(self, operation: str, owner_id: str, asset_id: Optional[str] = None):
        try:
            async with self._session_maker() as session:
                yield session
        except (AssetNotFoundError, IntegrityError):
            raise
        except SQLAlchemyError as e:
            logger.warning(
                "record_store_call_failed",
                operation=operation,
                owner_id=owner_id,
                asset_id=asset_id,
                error=str(e)
            )
            raise TransientStoreError(
                f"Record store {operation} failed: {type(e).__name__}",
                store="record",
                owner_id=owner_id,
                asset_id=asset_id
            ) from e

    async def get(self, owner_id: str, asset_id: str) -> Optional[AssetRecord]:
        async with self._session("get", owner_id, asset_id) as session:
            return await session.get(AssetRecord, (owner_id, asset_id))

    async def put(self, owner_id: str, asset_id: str, fields: Dict[str, Any]) -> AssetRecord:
        fields = {"last_modified_time": utcnow(), **fields}
        try:
            async with self._session("put", owner_id, asset_id) as session:
                record = await session.get(AssetRecord, (owner_id, asset_id))
                if record is None:
                    record = AssetRecord(
                        owner_id=owner_id,
                        asset_id=asset_id,
                        entity_type=EntityType.ASSET.value,
                        **fields
                    )
                    session.add(record)
                else:
                    for name, value in fields.items():
                        setattr(record, name, value)
                await session.commit()
                await session.refresh(record)
                return record
        except IntegrityError:
            # Lost an insert race; the row exists now, so overwrite it.
            return await self.conditional_update(owner_id, asset_id, fields)

    async def conditional_update(self, owner_id: str, asset_id: str, fields: Dict[str, Any]) -> AssetRecord:
        fields = {"last_modified_time": utcnow(), **fields}
        async with self._session("conditional_update", owner_id, asset_id) as session:
            statement = (
                update(AssetRecord)
                .where(AssetRecord.owner_id == owner_id)
                .where(AssetRecord.asset_id == asset_id)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(statement)
            if result.rowcount == 0:
                await session.rollback()
                raise AssetNotFoundError(owner_id, asset_id)
            await session.commit()
            return await session.get(AssetRecord, (owner_id, asset_id), populate_existing=True)

    async def delete_returning_previous(self, owner_id: str, asset_id: str) -> Optional[AssetRecord]:
        async with self._session("delete", owner_id, asset_id) as session:
            previous = await session.get(AssetRecord, (owner_id, asset_id))
            if previous is None:
                return None
            session.expunge(previous)
            result = await session.execute(
                delete(AssetRecord)
                .where(AssetRecord.owner_id == owner_id)
                .where(AssetRecord.asset_id == asset_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return previous if result.rowcount else None

    async def query_by_owner(self, owner_id: str, page_size: int, cursor: Optional[str] = None) -> AssetPage:
        if page_size < 1:
            raise MalformedInputError(f"page_size must be positive, got {page_size}")

        async with self._session("query", owner_id) as session:
            statement = (
                select(AssetRecord)
                .where(AssetRecord.entity_type == EntityType.ASSET.value)
                .where(AssetRecord.owner_id == owner_id)
                .order_by(AssetRecord.asset_id)
                .limit(page_size + 1)
            )
            if cursor:
                statement = statement.where(AssetRecord.asset_id > decode_cursor(cursor))

            result = await session.execute(statement)
            rows = list(result.scalars().all())

        next_cursor = None
        if len(rows) > page_size:
            rows = rows[:page_size]
            next_cursor = encode_cursor(rows[-1].asset_id)

        return AssetPage(items=rows, next_cursor=next_cursor)
