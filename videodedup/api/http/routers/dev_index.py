from fastapi import APIRouter, Depends, HTTPException, Query

from videodedup.api.http.deps import get_index
from videodedup.api.http.schemas.requests import FindDuplicatesRequest
from videodedup.api.http.schemas.responses import (
    DuplicateMatch,
    FindDuplicatesResponse,
    NearestResponse,
    Neighbor,
    WithinResponse,
)
from videodedup.errors import InvalidCodeLength
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.services.similarity import max_distance_for_threshold, similarity_percent

router = APIRouter(tags=["_dev"])

"""
Endpoints de soporte (DEV/QA):
- Consultan el índice Hamming en memoria con hashes de 64 caracteres '0'/'1'.
- Útiles para validar el preload y los umbrales sin subir videos.
"""

@router.get("/_dev/index/nearest", response_model=NearestResponse, summary="Vecino más cercano")
def nearest(
    hash: str = Query(..., description="Hash de 64 caracteres '0'/'1'"),
    index: HammingIndex = Depends(get_index),
):
    try:
        hit = index.nearest(hash)
    except InvalidCodeLength as e:
        raise HTTPException(status_code=400, detail=str(e))
    if hit is None:
        return NearestResponse(match=None)
    vid, dist = hit
    return NearestResponse(match=Neighbor(video_id=vid, distance=dist, similarity=similarity_percent(dist)))


@router.get("/_dev/index/within", response_model=WithinResponse, summary="Búsqueda por radio Hamming")
def within(
    hash: str = Query(..., description="Hash de 64 caracteres '0'/'1'"),
    max_distance: int = Query(10, ge=0, le=64),
    index: HammingIndex = Depends(get_index),
):
    try:
        hits = index.within_distance(hash, max_distance)
    except InvalidCodeLength as e:
        raise HTTPException(status_code=400, detail=str(e))
    items = [Neighbor(video_id=v, distance=d, similarity=similarity_percent(d)) for v, d in hits]
    return WithinResponse(count=len(items), items=items)


@router.post("/_dev/index/duplicates", response_model=FindDuplicatesResponse, summary="Duplicados por lote")
def duplicates(req: FindDuplicatesRequest, index: HammingIndex = Depends(get_index)):
    try:
        found = index.find_duplicates(
            [(c.video_id, c.videohash) for c in req.candidates], req.threshold
        )
    except InvalidCodeLength as e:
        raise HTTPException(status_code=400, detail=str(e))
    return FindDuplicatesResponse(
        max_distance=max_distance_for_threshold(req.threshold),
        results={
            vid: [DuplicateMatch(video_id=o, similarity=s) for o, s in matches]
            for vid, matches in found.items()
        },
    )


@router.get("/_dev/index/stats", summary="Tamaño y estado del índice")
def stats(index: HammingIndex = Depends(get_index)):
    return index.stats()
