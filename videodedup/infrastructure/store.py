import logging
import threading
import time
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

from videodedup.infrastructure.bitpack import VideoFingerprint

"""
Interfaz de persistencia de huellas + backend en memoria + write-through.

Tablas lógicas:
- original:  todo hash calculado (se guarda ANTES de decidir duplicado).
- unique:    videos que entraron al índice como únicos (se recargan al arrancar).
- duplicate: hijo -> (padre, similitud, exacto).
"""

logger = logging.getLogger(__name__)

FingerprintBatch = List[Tuple[str, VideoFingerprint]]


class FingerprintStore(Protocol):
    def save_fingerprint(self, video_id: str, fingerprint: VideoFingerprint) -> None: ...

    def record_unique(self, video_id: str, fingerprint: VideoFingerprint) -> None: ...

    def record_duplicate(self, video_id: str, parent_id: str, similarity: float, exact: bool) -> None: ...

    def get_fingerprint(self, video_id: str) -> Optional[VideoFingerprint]: ...

    def duplicates_of(self, parent_id: str) -> List[str]: ...

    def unlink_duplicate(self, video_id: str) -> None: ...

    def delete(self, video_id: str) -> None: ...

    def iter_unique(self, batch_size: int = 1000) -> Iterator[FingerprintBatch]: ...


class InMemoryFingerprintStore:
    """Backend en memoria (dev/tests). Thread-safe."""

    def __init__(self):
        self._lock = threading.Lock()
        self.original: Dict[str, VideoFingerprint] = {}
        self.unique: Dict[str, VideoFingerprint] = {}
        # hijo -> (padre, similitud, exacto, ts)
        self.duplicates: Dict[str, Tuple[str, float, bool, float]] = {}

    def save_fingerprint(self, video_id, fingerprint):
        with self._lock:
            self.original[video_id] = fingerprint

    def record_unique(self, video_id, fingerprint):
        with self._lock:
            self.unique[video_id] = fingerprint
            self.duplicates.pop(video_id, None)

    def record_duplicate(self, video_id, parent_id, similarity, exact):
        with self._lock:
            self.duplicates[video_id] = (parent_id, float(similarity), bool(exact), time.time())

    def get_fingerprint(self, video_id):
        with self._lock:
            return self.original.get(video_id) or self.unique.get(video_id)

    def duplicates_of(self, parent_id):
        with self._lock:
            children = [(ts, vid) for vid, (p, _, _, ts) in self.duplicates.items() if p == parent_id]
        return [vid for _, vid in sorted(children)]

    def unlink_duplicate(self, video_id):
        with self._lock:
            self.duplicates.pop(video_id, None)

    def delete(self, video_id):
        with self._lock:
            self.original.pop(video_id, None)
            self.unique.pop(video_id, None)
            self.duplicates.pop(video_id, None)

    def iter_unique(self, batch_size=1000):
        with self._lock:
            items = sorted(self.unique.items())
        for i in range(0, len(items), batch_size):
            yield items[i:i + batch_size]


class WriteThroughStore:
    """
    Redis como primario (lecturas y preload) y Postgres como secundario durable.
    Un fallo del secundario se loguea y no corta el flujo (como el write-through de evaluate).
    """

    def __init__(self, primary: FingerprintStore, secondary: FingerprintStore):
        self.primary = primary
        self.secondary = secondary

    def _both(self, op: str, *args) -> None:
        getattr(self.primary, op)(*args)
        try:
            getattr(self.secondary, op)(*args)
        except Exception as e:
            logger.warning("write-through a secundario falló (%s): %s", op, e)

    def save_fingerprint(self, video_id, fingerprint):
        self._both("save_fingerprint", video_id, fingerprint)

    def record_unique(self, video_id, fingerprint):
        self._both("record_unique", video_id, fingerprint)

    def record_duplicate(self, video_id, parent_id, similarity, exact):
        self._both("record_duplicate", video_id, parent_id, similarity, exact)

    def unlink_duplicate(self, video_id):
        self._both("unlink_duplicate", video_id)

    def delete(self, video_id):
        self._both("delete", video_id)

    def get_fingerprint(self, video_id):
        fp = self.primary.get_fingerprint(video_id)
        if fp is None:
            fp = self.secondary.get_fingerprint(video_id)
        return fp

    def duplicates_of(self, parent_id):
        return self.primary.duplicates_of(parent_id) or self.secondary.duplicates_of(parent_id)

    def iter_unique(self, batch_size=1000):
        return self.primary.iter_unique(batch_size)


def build_store(settings) -> FingerprintStore:
    """Elige backend según STORE_BACKEND."""

    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        return InMemoryFingerprintStore()

    if backend in ("redis", "redis+pg"):
        from videodedup.infrastructure.redisdb.client import get_redis
        from videodedup.infrastructure.redisdb.store import RedisFingerprintStore
        redis_store = RedisFingerprintStore(get_redis(settings.REDIS_URL))
        if backend == "redis":
            return redis_store

    from videodedup.infrastructure.pg.client import get_pool
    from videodedup.infrastructure.pg.dao import PgFingerprintStore
    if backend == "pg":
        return PgFingerprintStore(get_pool(settings.PG_DSN))
    if backend == "redis+pg":
        return WriteThroughStore(redis_store, PgFingerprintStore(get_pool(settings.PG_DSN)))
    raise ValueError(f"STORE_BACKEND desconocido: {settings.STORE_BACKEND}")
