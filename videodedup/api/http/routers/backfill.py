import asyncio
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from videodedup.api.http.deps import get_index, get_service, get_store
from videodedup.api.http.schemas.requests import BackfillRequest
from videodedup.api.http.schemas.responses import BackfillResponse, PreloadResponse
from videodedup.application.services.backfill import BackfillRunner, preload_index
from videodedup.application.services.dedup_service import DedupService
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.infrastructure.settings import Settings, get_settings
from videodedup.infrastructure.sources import source_for
from videodedup.infrastructure.store import FingerprintStore

router = APIRouter(tags=["backfill"])

logger = logging.getLogger(__name__)

"""
Endpoints de mantenimiento, protegidos con `Authorization: Bearer <BACKFILL_TOKEN>`.
Sin BACKFILL_TOKEN configurado quedan deshabilitados (503).
"""

def _check_token(authorization: Optional[str], settings: Settings) -> None:
    if not settings.BACKFILL_TOKEN:
        raise HTTPException(status_code=503, detail="Backfill deshabilitado (BACKFILL_TOKEN no configurado)")
    token = (authorization or "").removeprefix("Bearer ").strip()
    if not token or not hmac.compare_digest(token, settings.BACKFILL_TOKEN):
        logger.warning("Acceso no autorizado al endpoint de backfill")
        raise HTTPException(status_code=401, detail="No autorizado")


@router.post(
    "/backfill/preload",
    response_model=PreloadResponse,
    summary="Recargar el índice desde el store",
    description="Carga todas las huellas únicas persistidas al índice en memoria (por lotes).",
)
async def preload(
    batch_size: int = Query(1000, ge=1, le=100_000),
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    store: FingerprintStore = Depends(get_store),
    index: HammingIndex = Depends(get_index),
):
    _check_token(authorization, settings)
    loaded = await asyncio.to_thread(preload_index, store, index, batch_size)
    return PreloadResponse(message=f"Cargadas {loaded} huellas al índice", hashes_loaded=loaded)


@router.post(
    "/backfill/run",
    response_model=BackfillResponse,
    summary="Deduplicar un lote de videos históricos",
    description=(
        "Corre la deduplicación sobre cada video con a lo sumo BACKFILL_PARALLELISM en paralelo.\n"
        "Un video que falla no corta el lote: se reporta en `failures`."
    ),
)
async def run_backfill(
    req: BackfillRequest,
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
    service: DedupService = Depends(get_service),
):
    _check_token(authorization, settings)
    items = [(item.video_id, source_for(item.video_url, service.settings)) for item in req.items]
    report = await BackfillRunner(service).run(items, parallelism=settings.BACKFILL_PARALLELISM)
    return BackfillResponse(**report.to_dict())
