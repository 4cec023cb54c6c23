"""
Shared fixtures: an in-memory photo store, a shard tree under tmp_path and a
fake set of marketplace + CDN endpoints served through httpx.MockTransport.
"""

import json
import sys
import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import httpx
import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.marketplaces import OzonClient, WildberriesClient  # noqa: E402
from services.photo_store import ImageRecord, StoreError  # noqa: E402
from services.shards import ShardAllocator  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    logging.basicConfig(level=logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================================
# Metadata store double
# ============================================================================

class MemoryPhotoStore:
    """Same async interface as services.photo_store.PhotoStore, kept in a list."""

    def __init__(self):
        self.records: List[ImageRecord] = []
        self.fail_insert = False
        self.fail_query = False
        self.insert_calls = 0

    async def find_by_hash(self, source, sku, digest) -> Optional[ImageRecord]:
        if self.fail_query:
            raise StoreError("query failed: connection reset")
        for r in self.records:
            if r.source == source and r.marketplace_sku == sku and r.hash == digest:
                return replace(r)
        return None

    async def find_latest(self, source, sku) -> Optional[ImageRecord]:
        rows = [r for r in self.records if r.source == source and r.marketplace_sku == sku]
        return replace(rows[-1]) if rows else None

    async def insert(self, record: ImageRecord) -> int:
        self.insert_calls += 1
        if self.fail_insert:
            raise StoreError("insert failed: disk full")
        record.id = len(self.records) + 1
        record.upload_date = datetime.now(timezone.utc)
        self.records.append(replace(record))
        return record.id

    async def count(self, source=None) -> int:
        return sum(1 for r in self.records if source is None or r.source == source)

    def for_sku(self, source, sku) -> List[ImageRecord]:
        return [r for r in self.records if r.source == source and r.marketplace_sku == sku]


@pytest.fixture
def store():
    return MemoryPhotoStore()


@pytest.fixture
def images_dir(tmp_path):
    return tmp_path / "images"


@pytest.fixture
def allocator(images_dir):
    return ShardAllocator(images_dir, max_files=5000)


# ============================================================================
# Fake marketplaces
# ============================================================================

Image = Union[bytes, int]  # bytes = 200 body, int = error status


class FakeMarketplaces:
    """
    One MockTransport handler for:
      cdn.test   image bytes by URL
      ozon.test  /v2/product/list + /v2/product/info/list (single page)
      wb.test    /content/v2/get/cards/list (single page)
    """

    def __init__(self):
        self.images: Dict[str, Image] = {}
        self.ozon: List[Tuple[int, str, List[str]]] = []   # (product_id, offer_id, urls)
        self.wb: List[Tuple[str, List[str]]] = []          # (vendorCode, urls)
        self.failing: set = set()
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "cdn.test":
            body = self.images.get(str(request.url))
            if body is None:
                return httpx.Response(404)
            if isinstance(body, int):
                return httpx.Response(body)
            return httpx.Response(200, content=body, headers={"Content-Type": "image/jpeg"})

        if host == "ozon.test":
            if "ozon" in self.failing:
                return httpx.Response(500, json={"message": "internal error"})
            payload = json.loads(request.content)
            if request.url.path == "/v2/product/list":
                items = [{"product_id": pid, "offer_id": sku} for pid, sku, _ in self.ozon]
                return httpx.Response(200, json={"result": {"items": items, "total": len(items), "last_id": ""}})
            if request.url.path == "/v2/product/info/list":
                wanted = set(payload["product_id"])
                items = [
                    {"id": pid, "offer_id": sku, "primary_image": urls[0] if urls else "",
                     "images": urls}
                    for pid, sku, urls in self.ozon if pid in wanted
                ]
                return httpx.Response(200, json={"result": {"items": items}})

        if host == "wb.test":
            if "wb" in self.failing:
                return httpx.Response(500, json={"title": "internal error"})
            cards = [
                {"nmID": 1000 + i, "vendorCode": sku, "photos": [{"big": u} for u in urls]}
                for i, (sku, urls) in enumerate(self.wb)
            ]
            return httpx.Response(200, json={"cards": cards, "cursor": {"total": len(cards)}})

        return httpx.Response(404)

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def clients(self, http: httpx.AsyncClient):
        return [
            OzonClient(http, "123", "ozon-key", base_url="https://ozon.test"),
            WildberriesClient(http, "wb-key", base_url="https://wb.test"),
        ]


@pytest.fixture
def market():
    return FakeMarketplaces()
