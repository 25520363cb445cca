from fastapi import APIRouter, Depends, HTTPException

from videodedup.api.http.deps import get_service
from videodedup.api.http.schemas.requests import DedupRequest
from videodedup.api.http.schemas.responses import DedupResponse, ForgetResponse
from videodedup.application.services.dedup_service import DedupService
from videodedup.errors import DedupError, HashError
from videodedup.infrastructure.sources import source_for

router = APIRouter(tags=["dedup"])

"""
Router de deduplicación de videos.

Este endpoint orquesta:
  1) Huella de 64 bits (muestreo ffmpeg + señal estructural XOR señal de color).
  2) Persistencia de la huella (siempre, antes de decidir).
  3) Búsqueda del vecino más cercano en el índice Hamming y clasificación.

Notas:
  - La dedupe es informativa: el caller debe seguir publicando el video aunque
    este endpoint falle.
  - Re-enviar el mismo `video_id` es seguro (idempotente).
"""

@router.post(
    "/dedup",
    response_model=DedupResponse,
    summary="Deduplicar video: huella + vecino más cercano",
    description=(
        "Calcula la huella perceptual del video, la persiste y la compara contra el índice.\n\n"
        "- `unique`: se agrega al índice.\n"
        "- `near_duplicate` / `exact_duplicate`: se registra la relación con `matched_id`.\n"
    ),
    responses={
        200: {"description": "OK – Veredicto de deduplicación."},
        422: {"description": "Video ilegible, sin frames o no descargable."},
        500: {"description": "Error interno (persistencia, índice)."},
    },
)
async def dedup(req: DedupRequest, service: DedupService = Depends(get_service)) -> DedupResponse:
    source = source_for(req.video_url, service.settings)
    try:
        verdict = await service.deduplicate(req.video_id, source)
    except HashError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except DedupError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return DedupResponse(
        video_id=verdict.video_id,
        kind=verdict.kind,
        duplicated=verdict.is_duplicate,
        matched_id=verdict.matched_id,
        similarity=verdict.similarity,
        distance=verdict.distance,
        videohash=verdict.fingerprint.bits,
        publisher={
            "canister_id": req.canister_id,
            "publisher_principal": req.publisher_principal,
            "post_id": req.post_id,
        },
    )


@router.delete(
    "/videos/{video_id}",
    response_model=ForgetResponse,
    summary="Sacar un video de la deduplicación (borrado de post)",
)
async def forget(video_id: str, service: DedupService = Depends(get_service)) -> ForgetResponse:
    promoted = await service.forget(video_id)
    return ForgetResponse(video_id=video_id, promoted_id=promoted)
