# services/marketplaces.py
"""
Catalog clients: one per marketplace, each walking its own pagination scheme
and normalizing the answer to `Product(sku, photos)`.

  ozon    "last_id" cursor     SKU = offer_id
  wb      updatedAt+nmID       SKU = vendorCode
  yandex  page_token           SKU = offerId

A catalog is either fetched completely or not at all: any HTTP error or
unexpected payload raises CatalogError and the pages gathered so far are
thrown away, because ingestion assumes it sees the whole catalog.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import httpx

from settings import (
    MARKETPLACES,
    OZON_API_URL, OZON_CLIENT_ID, OZON_API_KEY, OZON_PAGE_SIZE,
    WB_API_URL, WB_API_KEY, WB_PAGE_SIZE,
    YANDEX_API_URL, YANDEX_API_KEY, YANDEX_BUSINESS_ID, YANDEX_PAGE_SIZE,
)

logger = logging.getLogger(__name__)


@dataclass
class Product:
    sku: str
    photos: List[str] = field(default_factory=list)


class CatalogError(RuntimeError):
    def __init__(self, source: str, message: str):
        super().__init__(f"[{source}] {message}")
        self.source = source


def _unique_urls(urls: Iterable[Any]) -> List[str]:
    seen = set()
    out = []
    for u in urls:
        if not isinstance(u, str):
            continue
        u = u.strip()
        if u and u not in seen:
            seen.add(u)
            out.append(u)
    return out


class CatalogClient:
    source = ""

    def __init__(self, http: httpx.AsyncClient, page_size: int):
        self.http = http
        self.page_size = page_size

    def _fail(self, message: str) -> CatalogError:
        return CatalogError(self.source, message)

    async def _post_json(self, url: str, *, json: Any, headers: Dict[str, str],
                         params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            resp = await self.http.post(url, json=json, headers=headers, params=params)
        except httpx.HTTPError as e:
            raise self._fail(f"request to {url} failed: {e}") from e
        if resp.status_code < 200 or resp.status_code >= 300:
            raise self._fail(f"{url} answered HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise self._fail(f"{url} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise self._fail(f"{url} returned {type(data).__name__}, expected an object")
        return data

    def _make_product(self, sku: Any, urls: Iterable[Any]) -> Optional[Product]:
        if sku is None or str(sku).strip() == "":
            logger.warning("%s: skipping catalog item without SKU", self.source)
            return None
        photos = _unique_urls(urls)
        if not photos:
            return None
        return Product(sku=str(sku).strip(), photos=photos)

    def pages(self) -> AsyncIterator[List[Product]]:
        raise NotImplementedError

    async def fetch_catalog(self) -> List[Product]:
        """
        Walk every page from the beginning. Each call owns its own cursor,
        so calling again simply restarts pagination.
        """
        products: List[Product] = []
        try:
            async for page in self.pages():
                products.extend(page)
        except (AttributeError, TypeError, KeyError) as e:
            raise self._fail(f"unexpected payload shape: {e!r}") from e
        logger.info("%s: catalog has %d products with photos", self.source, len(products))
        return products


class OzonClient(CatalogClient):
    source = "ozon"

    def __init__(self, http: httpx.AsyncClient, client_id: str, api_key: str,
                 base_url: str = OZON_API_URL, page_size: int = OZON_PAGE_SIZE):
        super().__init__(http, page_size)
        self.base_url = base_url.rstrip("/")
        self.headers = {"Client-Id": client_id, "Api-Key": api_key}

    def _image_urls(self, item: Dict[str, Any]) -> List[Any]:
        urls: List[Any] = []
        primary = item.get("primary_image")
        if isinstance(primary, list):
            urls.extend(primary)
        elif primary:
            urls.append(primary)
        for img in item.get("images") or []:
            urls.append(img.get("default_url") if isinstance(img, dict) else img)
        return urls

    async def _product_info(self, product_ids: List[Any]) -> List[Product]:
        data = await self._post_json(
            f"{self.base_url}/v2/product/info/list",
            json={"product_id": product_ids},
            headers=self.headers,
        )
        items = (data.get("result") or {}).get("items")
        if not isinstance(items, list):
            raise self._fail("product info response has no result.items")
        out = []
        for item in items:
            p = self._make_product(item.get("offer_id"), self._image_urls(item))
            if p:
                out.append(p)
        return out

    async def pages(self) -> AsyncIterator[List[Product]]:
        last_id = ""
        while True:
            data = await self._post_json(
                f"{self.base_url}/v2/product/list",
                json={"filter": {"visibility": "ALL"}, "last_id": last_id, "limit": self.page_size},
                headers=self.headers,
            )
            result = data.get("result")
            if not isinstance(result, dict) or not isinstance(result.get("items"), list):
                raise self._fail("product list response has no result.items")
            items = result["items"]
            ids = [it.get("product_id") for it in items if it.get("product_id") is not None]
            if ids:
                yield await self._product_info(ids)

            last_id = result.get("last_id") or ""
            if len(items) < self.page_size or not last_id:
                return


class WildberriesClient(CatalogClient):
    source = "wb"

    def __init__(self, http: httpx.AsyncClient, api_key: str,
                 base_url: str = WB_API_URL, page_size: int = WB_PAGE_SIZE):
        super().__init__(http, page_size)
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": api_key}

    @staticmethod
    def _card_urls(card: Dict[str, Any]) -> List[Any]:
        urls: List[Any] = []
        for photo in card.get("photos") or []:
            if isinstance(photo, dict):
                urls.append(photo.get("big") or photo.get("c516x688") or photo.get("square"))
            else:
                urls.append(photo)
        urls.extend(card.get("mediaFiles") or [])
        return urls

    async def pages(self) -> AsyncIterator[List[Product]]:
        cursor: Dict[str, Any] = {"limit": self.page_size}
        while True:
            data = await self._post_json(
                f"{self.base_url}/content/v2/get/cards/list",
                json={"settings": {"cursor": cursor, "filter": {"withPhoto": -1}}},
                headers=self.headers,
            )
            cards = data.get("cards")
            page_cursor = data.get("cursor")
            if not isinstance(cards, list) or not isinstance(page_cursor, dict):
                raise self._fail("cards response is missing cards or cursor")

            page = []
            for card in cards:
                p = self._make_product(card.get("vendorCode"), self._card_urls(card))
                if p:
                    page.append(p)
            yield page

            total = page_cursor.get("total")
            if not isinstance(total, int):
                raise self._fail("cursor.total is missing")
            if total < self.page_size:
                return
            if page_cursor.get("updatedAt") is None or page_cursor.get("nmID") is None:
                raise self._fail("cursor has no updatedAt/nmID to continue from")
            if (page_cursor["updatedAt"], page_cursor["nmID"]) == (cursor.get("updatedAt"), cursor.get("nmID")):
                raise self._fail("cursor did not advance")
            cursor = {
                "limit": self.page_size,
                "updatedAt": page_cursor["updatedAt"],
                "nmID": page_cursor["nmID"],
            }


class YandexMarketClient(CatalogClient):
    source = "yandex"

    def __init__(self, http: httpx.AsyncClient, api_key: str, business_id: str,
                 base_url: str = YANDEX_API_URL, page_size: int = YANDEX_PAGE_SIZE):
        super().__init__(http, page_size)
        self.base_url = base_url.rstrip("/")
        self.business_id = business_id
        self.headers = {"Api-Key": api_key}

    async def pages(self) -> AsyncIterator[List[Product]]:
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"limit": self.page_size}
            if page_token:
                params["page_token"] = page_token
            data = await self._post_json(
                f"{self.base_url}/businesses/{self.business_id}/offer-mappings",
                json={},
                headers=self.headers,
                params=params,
            )
            result = data.get("result")
            if not isinstance(result, dict) or not isinstance(result.get("offerMappings"), list):
                raise self._fail("offer-mappings response has no result.offerMappings")

            mappings = result["offerMappings"]
            page = []
            for m in mappings:
                offer = m.get("offer") or {}
                p = self._make_product(offer.get("offerId"), offer.get("pictures") or [])
                if p:
                    page.append(p)
            yield page

            page_token = (result.get("paging") or {}).get("nextPageToken")
            if not page_token or len(mappings) < self.page_size:
                return


def build_clients(http: httpx.AsyncClient, enabled: Optional[List[str]] = None) -> List[CatalogClient]:
    """Clients for every enabled marketplace that has credentials configured."""
    enabled = [s.lower() for s in (enabled if enabled is not None else MARKETPLACES)]
    clients: List[CatalogClient] = []
    for source in enabled:
        if source == "ozon":
            if OZON_CLIENT_ID and OZON_API_KEY:
                clients.append(OzonClient(http, OZON_CLIENT_ID, OZON_API_KEY))
                continue
        elif source == "wb":
            if WB_API_KEY:
                clients.append(WildberriesClient(http, WB_API_KEY))
                continue
        elif source == "yandex":
            if YANDEX_API_KEY and YANDEX_BUSINESS_ID:
                clients.append(YandexMarketClient(http, YANDEX_API_KEY, YANDEX_BUSINESS_ID))
                continue
        else:
            logger.warning("Unknown marketplace %r in MARKETPLACES, ignoring", source)
            continue
        logger.warning("%s: credentials not configured, skipping", source)
    return clients
