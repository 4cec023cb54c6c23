# main.py
import os
import sys
import asyncio
import logging
import asyncpg
import traceback
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Ensure app root on path
APP_ROOT = os.path.dirname(os.path.abspath(__file__))
if APP_ROOT not in sys.path:
    sys.path.insert(0, APP_ROOT)

from settings import (
    ENABLE_DOCS, IMAGES_DIR, DATABASE_URL, DB_CONNECT_TIMEOUT, SYNC_ON_STARTUP,
)
from services.photo_store import PhotoStore, StoreError

# Routers
from api.sync import router as sync_router, run_app_sync

logger = logging.getLogger("uvicorn.error")

app = FastAPI(
    title="Marketplace Photo Sync",
    version="1.0.0",
    docs_url="/docs" if ENABLE_DOCS else None,
    redoc_url="/redoc" if ENABLE_DOCS else None,
    openapi_url="/openapi.json" if ENABLE_DOCS else None,
)

# ---- log full tracebacks so 500s aren’t silent ----
class TraceLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error("\n===== UNCAUGHT EXCEPTION =====")
            logger.error("Path: %s %s", request.method, request.url.path)
            logger.error(traceback.format_exc())
            logger.error("===== END TRACE =====\n")
            raise
app.add_middleware(TraceLogMiddleware)


# DB pool + first sync
@app.on_event("startup")
async def startup():
    os.makedirs(IMAGES_DIR, exist_ok=True)
    app.state.sync_running = False
    try:
        app.state.db = await asyncpg.create_pool(DATABASE_URL, timeout=DB_CONNECT_TIMEOUT)
        logger.info("✅ DB pool created")
    except Exception as e:
        app.state.db = None
        logger.error(f"⚠️ Failed to connect to DB at startup: {e}")
        return

    try:
        await PhotoStore(app.state.db).ensure_schema()
    except StoreError as e:
        logger.error(f"⚠️ photos table check failed: {e}")

    if SYNC_ON_STARTUP:
        logger.info("Initial marketplace sync on startup...")
        app.state.sync_running = True
        app.state.startup_sync = asyncio.create_task(run_app_sync(app))

@app.on_event("shutdown")
async def shutdown():
    task = getattr(app.state, "startup_sync", None)
    if task is not None and not task.done():
        task.cancel()
    try:
        if getattr(app.state, "db", None):
            await app.state.db.close()
            logger.info("🔌 DB pool closed")
    except Exception as e:
        logger.error(f"Shutdown error: {e}")

# -------- Router mounts --------
app.include_router(sync_router)              # /api/sync

@app.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    return "ok"

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="debug",
    )
