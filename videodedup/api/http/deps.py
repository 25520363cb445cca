from fastapi import Request

from videodedup.application.services.dedup_service import DedupService
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.infrastructure.store import FingerprintStore

"""
Dependencias FastAPI: el índice, el store y el servicio viven en `app.state`
(se crean una vez en el lifespan, nunca como globales de módulo).
"""

def get_index(request: Request) -> HammingIndex:
    return request.app.state.index

def get_store(request: Request) -> FingerprintStore:
    return request.app.state.store

def get_service(request: Request) -> DedupService:
    return request.app.state.dedup_service
