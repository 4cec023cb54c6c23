#!/usr/bin/env python3
"""
Run one marketplace photo sync pass from the command line (cron, CI, by hand).

  python scripts/run_sync.py                    # every configured marketplace
  python scripts/run_sync.py --source wb        # only Wildberries
  python scripts/run_sync.py --init-schema      # create the photos table first

Exit code is 0 even when a marketplace failed; check the log output.
"""
from __future__ import annotations

import sys
import asyncio
import argparse
import logging
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import asyncpg
import httpx

from settings import DATABASE_URL, DB_CONNECT_TIMEOUT, HTTP_TIMEOUT, LOG_LEVEL, MARKETPLACES
from services.marketplaces import build_clients
from services.photo_store import PhotoStore
from services.sync_service import run_sync


async def main(sources: list[str], init_schema: bool) -> int:
    if not DATABASE_URL:
        logging.error("DATABASE_URL is not set")
        return 2

    pool = await asyncpg.create_pool(DATABASE_URL, timeout=DB_CONNECT_TIMEOUT)
    try:
        store = PhotoStore(pool)
        if init_schema:
            await store.ensure_schema()
        before = await store.count()
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, follow_redirects=True) as http:
            await run_sync(store, clients=build_clients(http, sources), http=http)
        after = await store.count()
        logging.info("photos table: %d -> %d rows", before, after)
    finally:
        await pool.close()
    return 0


if __name__ == "__main__":
    ap = argparse.ArgumentParser("marketplace photo sync")
    ap.add_argument("--source", action="append", choices=["ozon", "wb", "yandex"],
                    help="Marketplace to sync (repeatable). Default: MARKETPLACES from env")
    ap.add_argument("--init-schema", action="store_true", help="Create the photos table if missing")
    args = ap.parse_args()

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sys.exit(asyncio.run(main(args.source or MARKETPLACES, args.init_schema)))
