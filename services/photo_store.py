# services/photo_store.py
from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Optional

import asyncpg


class Source(str, enum.Enum):
    OZON = "ozon"
    WB = "wb"
    YANDEX = "yandex"
    LOCAL = "local"  # direct uploads, written by the upload API only


# closed or closing pools raise InterfaceError, acquire timeouts TimeoutError
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, asyncio.TimeoutError, OSError)


class StoreError(RuntimeError):
    """Any failure talking to the metadata store."""


@dataclass
class ImageRecord:
    filename: str
    original_name: str
    file_path: str
    file_size: int
    mime_type: str
    description: str
    tags: str
    source: str
    hash: str
    marketplace_sku: Optional[str] = None
    id: Optional[int] = None
    upload_date: Optional[datetime] = None
    is_public: bool = True

    @classmethod
    def from_row(cls, row: Any) -> "ImageRecord":
        names = {f.name for f in fields(cls)}
        return cls(**{k: row[k] for k in row.keys() if k in names})


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS photos (
    id              BIGSERIAL PRIMARY KEY,
    filename        TEXT NOT NULL UNIQUE,
    original_name   TEXT NOT NULL,
    file_path       TEXT NOT NULL,
    file_size       BIGINT,
    mime_type       TEXT,
    upload_date     TIMESTAMPTZ NOT NULL DEFAULT now(),
    description     TEXT,
    tags            TEXT,
    is_public       BOOLEAN NOT NULL DEFAULT TRUE,
    source          TEXT NOT NULL DEFAULT 'local',
    hash            TEXT,
    marketplace_sku TEXT
);
CREATE INDEX IF NOT EXISTS photos_source_sku_hash_idx
    ON photos (source, marketplace_sku, hash);
"""

SELECT_COLS = """
    id, filename, original_name, file_path, file_size, mime_type,
    upload_date, description, tags, is_public, source, hash, marketplace_sku
"""


class PhotoStore:
    """
    Row store for Image Records on top of an asyncpg pool.

    Insert-only on purpose: a changed image becomes a new row, older rows for
    the same SKU stay as history. Deleting rows (and files) belongs to the
    upload/CRUD API.
    """

    def __init__(self, pool: asyncpg.pool.Pool):
        self.pool = pool

    async def ensure_schema(self) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except _DRIVER_ERRORS as e:
            raise StoreError(f"schema setup failed: {e}") from e

    async def _fetchrow(self, sql: str, *args) -> Optional[ImageRecord]:
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(sql, *args)
        except _DRIVER_ERRORS as e:
            raise StoreError(f"query failed: {e}") from e
        return ImageRecord.from_row(row) if row else None

    async def find_by_hash(self, source: str, sku: str, digest: str) -> Optional[ImageRecord]:
        return await self._fetchrow(
            f"""
            SELECT {SELECT_COLS}
            FROM photos
            WHERE source = $1 AND marketplace_sku = $2 AND hash = $3
            LIMIT 1
            """,
            source, sku, digest,
        )

    async def find_latest(self, source: str, sku: str) -> Optional[ImageRecord]:
        """Newest record for a SKU, i.e. the current version of its image history."""
        return await self._fetchrow(
            f"""
            SELECT {SELECT_COLS}
            FROM photos
            WHERE source = $1 AND marketplace_sku = $2
            ORDER BY upload_date DESC, id DESC
            LIMIT 1
            """,
            source, sku,
        )

    async def insert(self, record: ImageRecord) -> int:
        try:
            async with self.pool.acquire() as conn:
                new_id = await conn.fetchval(
                    """
                    INSERT INTO photos (filename, original_name, file_path, file_size, mime_type,
                                        description, tags, source, hash, marketplace_sku)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                    RETURNING id
                    """,
                    record.filename,
                    record.original_name,
                    record.file_path,
                    record.file_size,
                    record.mime_type,
                    record.description,
                    record.tags,
                    record.source,
                    record.hash,
                    record.marketplace_sku,
                )
        except _DRIVER_ERRORS as e:
            raise StoreError(f"insert failed: {e}") from e
        record.id = int(new_id)
        return record.id

    async def count(self, source: Optional[str] = None) -> int:
        try:
            async with self.pool.acquire() as conn:
                if source is None:
                    return int(await conn.fetchval("SELECT COUNT(*) FROM photos"))
                return int(await conn.fetchval("SELECT COUNT(*) FROM photos WHERE source = $1", source))
        except _DRIVER_ERRORS as e:
            raise StoreError(f"count failed: {e}") from e
