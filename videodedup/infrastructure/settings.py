from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings

"""
Configuración centralizada (se carga de .env si existe).
"""

class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    # Layout de la huella (cambiarlo invalida la comparabilidad con hashes viejos)
    FRAME_SIZE: int = 144
    GRID_SIZE: int = 8

    # Muestreo de frames
    SAMPLE_INTERVAL_S: float = 1.0
    SMALL_FILE_INTERVAL_S: float = 2.0
    SMALL_FILE_BYTES: int = 10_000_000
    MAX_FRAMES: int = 60
    EXTRACT_TIMEOUT_S: float = 120.0
    SCRATCH_DIR: str | None = None  # None -> /dev/shm si existe

    # Umbrales de dedupe (%)
    DUP_THRESHOLD: float = 85.0
    EXACT_DUP_THRESHOLD: float = 98.0

    # Pool de CPU para decodificar/hashear
    HASH_WORKERS: int = 4

    # Descarga
    VIDEO_MAX_MB: int = 200
    DL_TIMEOUT_S: int = 30

    # Persistencia: "memory" | "redis" | "pg" | "redis+pg"
    STORE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    PG_DSN: str | None = None
    PRELOAD_ON_STARTUP: bool = True
    PRELOAD_BATCH_SIZE: int = 1000

    # Backfill
    BACKFILL_TOKEN: str | None = None
    BACKFILL_PARALLELISM: int = 10

    # Worker (Redis Streams)
    DEDUP_STREAM: str = "queue:dedup"
    VERDICT_STREAM: str = "events:dedup"
    WORKER_GROUP: str = "g1"
    # Pendientes de otro consumidor ociosos más de esto se reclaman (XAUTOCLAIM)
    WORKER_RECLAIM_IDLE_MS: int = 60_000
    WORKER_RECLAIM_INTERVAL_S: float = 30.0

    class Config:
        env_file = ".env"

    @model_validator(mode="after")
    def _check_thresholds(self):
        if not 0.0 < self.DUP_THRESHOLD < self.EXACT_DUP_THRESHOLD <= 100.0:
            raise ValueError(
                "Se requiere 0 < DUP_THRESHOLD < EXACT_DUP_THRESHOLD <= 100 "
                f"(llegó {self.DUP_THRESHOLD} / {self.EXACT_DUP_THRESHOLD})"
            )
        return self

@lru_cache
def get_settings() -> Settings:
    """Singleton de Settings para inyectar en FastAPI."""

    return Settings()
