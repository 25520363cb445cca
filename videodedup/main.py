import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI

from videodedup.api.http.routers.backfill import router as backfill_router
from videodedup.api.http.routers.dedup import router as dedup_router
from videodedup.api.http.routers.dev_index import router as dev_index_router
from videodedup.application.services.backfill import preload_index
from videodedup.application.services.dedup_service import DedupService
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.infrastructure.settings import get_settings
from videodedup.infrastructure.store import build_store

"""
Punto de entrada de la app FastAPI.
Incluye routers públicos, de backfill y de desarrollo.
"""

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    - En startup: pool de CPU, store, índice y (opcional) preload de huellas únicas.
    - En shutdown: apaga el pool.
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    executor = ThreadPoolExecutor(max_workers=settings.HASH_WORKERS, thread_name_prefix="videohash")
    store = build_store(settings)
    index = HammingIndex()

    if settings.PRELOAD_ON_STARTUP:
        loaded = await asyncio.to_thread(preload_index, store, index, settings.PRELOAD_BATCH_SIZE)
        logger.info("Índice precargado con %d huellas (backend=%s)", loaded, settings.STORE_BACKEND)

    app.state.settings = settings
    app.state.store = store
    app.state.index = index
    app.state.dedup_service = DedupService(settings, index, store, executor)

    try:
        yield
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
        if "pg" in settings.STORE_BACKEND.lower():
            from videodedup.infrastructure.pg.client import close_pools
            close_pools()

app = FastAPI(title="Video Dedup Service", version="1.0.0", lifespan=lifespan)

app.include_router(dedup_router, prefix="/api")
app.include_router(backfill_router, prefix="/api")
app.include_router(dev_index_router, prefix="/api")

@app.get("/health", tags=["health"])
def health():
    """Healthcheck simple para liveness/readiness."""

    return {"status": "ok"}
