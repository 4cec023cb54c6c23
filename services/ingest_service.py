# services/ingest_service.py
import logging
import mimetypes
import os
import re
import secrets
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from services.marketplaces import Product
from services.photo_store import ImageRecord, StoreError
from services.shards import ShardAllocator
from utils.files import download_to_file, file_size, remove_quietly, sha256_file

logger = logging.getLogger(__name__)

DEFAULT_EXT = ".jpg"
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class IngestStats:
    created: int = 0
    unchanged: int = 0
    failed: int = 0

    def add(self, other: "IngestStats") -> None:
        self.created += other.created
        self.unchanged += other.unchanged
        self.failed += other.failed


def safe_part(s: str) -> str:
    return _UNSAFE.sub("_", s).strip("_") or "item"


def split_url_name(url: str) -> tuple[str, str]:
    """(original_name, extension) taken from the URL path; extension falls back to .jpg."""
    original = os.path.basename(urlparse(url).path) or "image"
    ext = os.path.splitext(original)[1].lower()
    if not ext or not re.fullmatch(r"\.[a-z0-9]{1,5}", ext):
        ext = DEFAULT_EXT
    return original, ext


def make_filename(source: str, sku: str, ext: str) -> str:
    # ms timestamp + random suffix keeps concurrent downloads apart
    return f"{source}_{safe_part(sku)}_{int(time.time() * 1000)}_{secrets.token_hex(4)}{ext}"


def guess_mime(filename: str, ext: str) -> str:
    return mimetypes.guess_type(filename)[0] or f"image/{ext.lstrip('.')}"


async def ingest_photo(
    url: Any,
    sku: str,
    source: str,
    *,
    http: httpx.AsyncClient,
    store: Any,
    allocator: ShardAllocator,
) -> str:
    """
    Download one photo and record it unless this SKU already has the same bytes.

    Returns "created", "unchanged", "skipped" or "failed". Failures are logged
    here and never raised, so one bad photo cannot stop the product.
    """
    if not url or not isinstance(url, str):
        return "skipped"

    try:
        original_name, ext = split_url_name(url)
    except ValueError as e:
        logger.warning("%s/%s: unusable photo URL %r: %s", source, sku, url, e)
        return "failed"
    filename = make_filename(source, sku, ext)

    # STEP A: place the file in a shard and stream it in
    try:
        shard = await allocator.allocate()
    except OSError as e:
        logger.error("%s/%s: no shard available for %s: %s", source, sku, url, e)
        return "failed"
    dest = shard / filename
    if not await download_to_file(http, url, dest):
        return "failed"

    # STEP B: content hash decides whether we have seen these bytes for this SKU
    try:
        digest = await sha256_file(dest)
        existing = await store.find_by_hash(source, sku, digest)
    except (OSError, StoreError) as e:
        logger.error("%s/%s: could not check %s: %s", source, sku, filename, e)
        await remove_quietly(dest)
        return "failed"

    if existing is not None:
        logger.debug("%s/%s: photo %s unchanged (record %s)", source, sku, digest[:7], existing.id)
        await remove_quietly(dest)
        return "unchanged"

    # STEP C: new or changed content -> new row, older rows stay as history
    try:
        size = await file_size(dest)
    except OSError as e:
        logger.error("%s/%s: could not stat %s: %s", source, sku, dest, e)
        await remove_quietly(dest)
        return "failed"

    record = ImageRecord(
        filename=filename,
        original_name=original_name,
        file_path=f"{allocator.root.name}/{shard.name}/{filename}",
        file_size=size,
        mime_type=guess_mime(filename, ext),
        description=f"Photo for {sku}",
        tags=f"{source},{sku}",
        source=source,
        hash=digest,
        marketplace_sku=sku,
    )
    try:
        new_id = await store.insert(record)
    except StoreError as e:
        logger.error("%s/%s: saving %s failed, removing file: %s", source, sku, filename, e)
        await remove_quietly(dest)
        return "failed"

    logger.info("%s/%s: stored new photo %s as record %s", source, sku, record.file_path, new_id)
    return "created"


async def ingest_product(
    product: Product,
    source: str,
    *,
    http: httpx.AsyncClient,
    store: Any,
    allocator: ShardAllocator,
) -> IngestStats:
    """Run every photo of one product through `ingest_photo`, one after another."""
    stats = IngestStats()
    for url in product.photos:
        outcome = await ingest_photo(url, product.sku, source, http=http, store=store, allocator=allocator)
        if outcome == "created":
            stats.created += 1
        elif outcome == "unchanged":
            stats.unchanged += 1
        elif outcome == "failed":
            stats.failed += 1
    return stats
