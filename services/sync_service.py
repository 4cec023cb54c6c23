# services/sync_service.py
import asyncio
import logging
from typing import Any, List, Optional

import httpx

from services.ingest_service import IngestStats, ingest_product
from services.marketplaces import CatalogClient, CatalogError, build_clients
from services.shards import ShardAllocator
from settings import HTTP_TIMEOUT

logger = logging.getLogger(__name__)


async def sync_source(
    client: CatalogClient,
    *,
    http: httpx.AsyncClient,
    store: Any,
    allocator: ShardAllocator,
) -> IngestStats:
    """
    One marketplace: fetch the whole catalog, then ingest its products
    strictly one at a time. Raises CatalogError if the catalog can't be fetched.
    """
    products = await client.fetch_catalog()

    totals = IngestStats()
    for product in products:
        try:
            totals.add(await ingest_product(product, client.source, http=http, store=store, allocator=allocator))
        except Exception:
            totals.failed += len(product.photos)
            logger.exception("%s: product %s failed", client.source, product.sku)

    logger.info(
        "%s: sync done - %d products, %d new photos, %d unchanged, %d failed",
        client.source, len(products), totals.created, totals.unchanged, totals.failed,
    )
    return totals


async def _guarded(client: CatalogClient, **kwargs) -> None:
    try:
        await sync_source(client, **kwargs)
    except CatalogError as e:
        logger.error("%s: catalog fetch failed, source skipped this pass: %s", client.source, e)
    except Exception:
        logger.exception("%s: sync aborted", client.source)


async def run_sync(
    store: Any,
    *,
    clients: Optional[List[CatalogClient]] = None,
    http: Optional[httpx.AsyncClient] = None,
    allocator: Optional[ShardAllocator] = None,
) -> None:
    """
    One ingestion pass over every configured marketplace.

    Sources run concurrently and fail independently. Returns once all of them
    have finished; the outcome is only visible in the logs.
    """
    own_http = http is None
    if own_http:
        http = httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True)
    allocator = allocator or ShardAllocator()
    try:
        if clients is None:
            clients = build_clients(http)
        if not clients:
            logger.warning("No marketplaces configured, nothing to sync")
            return
        logger.info("Marketplace sync started: %s", ", ".join(c.source for c in clients))
        await asyncio.gather(
            *(_guarded(c, http=http, store=store, allocator=allocator) for c in clients)
        )
    finally:
        if own_http:
            await http.aclose()
        logger.info("Marketplace sync finished")
