# utils/files.py
import asyncio
import hashlib
import logging
import os
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def _sha256_sync(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


async def sha256_file(path: Path) -> str:
    """SHA-256 hex digest of a file's bytes (read off the event loop)."""
    return await asyncio.to_thread(_sha256_sync, Path(path))


async def file_size(path: Path) -> int:
    st = await asyncio.to_thread(os.stat, path)
    return st.st_size


async def remove_quietly(path: Path) -> bool:
    """
    Delete a file, logging instead of raising.
    Returns True when the file is gone afterwards (including "was never there").
    """
    try:
        await asyncio.to_thread(os.unlink, path)
        return True
    except FileNotFoundError:
        return True
    except OSError as e:
        logger.warning("Could not delete %s: %s", path, e)
        return False


async def download_to_file(client: httpx.AsyncClient, url: str, dest: Path) -> bool:
    """
    Stream `url` into `dest`.

    Returns False (and leaves no partial file behind) on malformed URLs,
    network errors, non-2xx answers or write failures. Never raises for those.
    File writes go through a worker thread like the other helpers here.
    """
    try:
        async with client.stream("GET", url) as resp:
            resp.raise_for_status()
            fh = await asyncio.to_thread(open, dest, "wb")
            try:
                async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                    await asyncio.to_thread(fh.write, chunk)
            finally:
                await asyncio.to_thread(fh.close)
        return True
    except httpx.HTTPStatusError as e:
        logger.warning("Download failed for %s: HTTP %s", url, e.response.status_code)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning("Download failed for %s: %s", url, e)
    except OSError as e:
        logger.error("Could not write %s: %s", dest, e)
    await remove_quietly(dest)
    return False
