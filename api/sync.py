# api/sync.py
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request

from settings import SYNC_TOKEN, get_db_pool
from services.photo_store import PhotoStore
from services.sync_service import run_sync

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["sync"])


def _ensure_authorized(authorization: str | None):
    if not SYNC_TOKEN:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1]
    if token != SYNC_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid token")


def is_sync_running(app: FastAPI) -> bool:
    return bool(getattr(app.state, "sync_running", False))


async def run_app_sync(app: FastAPI) -> None:
    """Run one pass against the app's pool; clears the running flag when done."""
    app.state.sync_running = True
    try:
        await run_sync(PhotoStore(app.state.db))
    except Exception:
        logger.exception("Marketplace sync crashed")
    finally:
        app.state.sync_running = False


@router.api_route("/sync", methods=["GET", "POST"])
async def trigger_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    authorization: str | None = Header(default=None),
    pool=Depends(get_db_pool),
):
    """
    Manual sync trigger. Starts a pass in the background and returns at once;
    progress and failures only show up in the logs.
    """
    _ensure_authorized(authorization)

    app = request.app
    if is_sync_running(app):
        return {"status": "already_running"}

    logger.info("Manual marketplace sync requested")
    app.state.sync_running = True  # claim before the task starts, so a second call sees it
    background_tasks.add_task(run_app_sync, app)
    return {"status": "started"}
