# settings.py
import os
from dotenv import load_dotenv
from fastapi import Request, HTTPException
import asyncpg

load_dotenv()

# -----------------------------------------------------------------------------
# Core app settings
# -----------------------------------------------------------------------------
ENV = (os.getenv("ENV") or "development").lower()
ENABLE_DOCS = ENV != "production"

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
UPLOADS_DIR = os.getenv("UPLOADS_DIR", os.path.join(BASE_DIR, "uploads"))
IMAGES_DIR = os.path.join(UPLOADS_DIR, "images")  # shard root: images/001, images/002, ...

# Shard cap. Soft bound: concurrent sources may overshoot it by a few files.
MAX_FILES_PER_DIR = int(os.getenv("MAX_FILES_PER_DIR", "5000"))

DATABASE_URL = os.getenv("DATABASE_URL")
DB_CONNECT_TIMEOUT = float(os.getenv("DB_CONNECT_TIMEOUT", "8"))

LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()

# -----------------------------------------------------------------------------
# Marketplace sync
# -----------------------------------------------------------------------------
# The only bound on a hung catalog page or image download.
HTTP_TIMEOUT = float(os.getenv("MARKETPLACE_HTTP_TIMEOUT", "30"))

MARKETPLACES = [
    s.strip().lower()
    for s in (os.getenv("MARKETPLACES") or "ozon,wb,yandex").split(",")
    if s.strip()
]

SYNC_ON_STARTUP = (os.getenv("SYNC_ON_STARTUP") or "true").lower() in {"1", "true", "yes"}

# Optional bearer token for GET/POST /api/sync. Empty = open (like the old server).
SYNC_TOKEN = (os.getenv("SYNC_TOKEN") or "").strip()

# Ozon Seller API
OZON_API_URL = (os.getenv("OZON_API_URL") or "https://api-seller.ozon.ru").rstrip("/")
OZON_CLIENT_ID = os.getenv("OZON_CLIENT_ID", "").strip()
OZON_API_KEY = os.getenv("OZON_API_KEY", "").strip()
OZON_PAGE_SIZE = int(os.getenv("OZON_PAGE_SIZE", "1000"))

# Wildberries content API
WB_API_URL = (os.getenv("WB_API_URL") or "https://content-api.wildberries.ru").rstrip("/")
WB_API_KEY = os.getenv("WB_API_KEY", "").strip()
WB_PAGE_SIZE = int(os.getenv("WB_PAGE_SIZE", "100"))

# Yandex Market partner API
YANDEX_API_URL = (os.getenv("YANDEX_API_URL") or "https://api.partner.market.yandex.ru").rstrip("/")
YANDEX_API_KEY = os.getenv("YANDEX_API_KEY", "").strip()
YANDEX_BUSINESS_ID = os.getenv("YANDEX_BUSINESS_ID", "").strip()
YANDEX_PAGE_SIZE = int(os.getenv("YANDEX_PAGE_SIZE", "200"))


# -----------------------------------------------------------------------------
# Helper for accessing DB pool in routes
# -----------------------------------------------------------------------------
def get_db_pool(request: Request) -> asyncpg.pool.Pool:
    """
    Dependency to fetch the asyncpg pool from app.state.
    Raises HTTPException if the pool is missing (e.g., before startup).
    """
    pool = getattr(request.app.state, "db", None)
    if pool is None:
        raise HTTPException(status_code=500, detail="DB pool not initialized")
    return pool
