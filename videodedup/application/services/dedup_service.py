import asyncio
import inspect
import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from videodedup.application.services.fingerprint_service import compute_fingerprint
from videodedup.infrastructure.bitpack import VideoFingerprint
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.infrastructure.settings import Settings, get_settings
from videodedup.infrastructure.sources import VideoSource
from videodedup.infrastructure.store import FingerprintStore
from videodedup.services.similarity import (
    VerdictKind,
    classify,
    max_distance_for_threshold,
    similarity_percent,
)

logger = logging.getLogger(__name__)

CompletionCallback = Callable[["DuplicateVerdict"], Any]


@dataclass(frozen=True)
class DuplicateVerdict:
    """Resultado efímero de comparar una huella contra el índice (no se guarda aquí)."""

    video_id: str
    fingerprint: VideoFingerprint
    kind: VerdictKind
    matched_id: Optional[str] = None
    similarity: Optional[float] = None
    distance: Optional[int] = None

    @property
    def is_duplicate(self) -> bool:
        return self.kind != "unique"

    @property
    def exact(self) -> bool:
        return self.kind == "exact_duplicate"

    def to_dict(self) -> dict:
        return {
            "video_id": self.video_id,
            "videohash": self.fingerprint.bits,
            "kind": self.kind,
            "matched_id": self.matched_id,
            "similarity": self.similarity,
            "distance": self.distance,
        }


@dataclass
class DedupService:
    """
    Orquestador de deduplicación.

    Pipeline por video:
      1) Muestreo de frames + huella de 64 bits (CPU en `executor`).
      2) Persistencia incondicional de la huella (`save_fingerprint`) ANTES de
         decidir, para que un reintento del job no tenga que volver a hashear.
      3) Vecino más cercano en el índice (ignorando el propio id):
         - similitud >= DUP_THRESHOLD: duplicado (near/exact según EXACT_DUP_THRESHOLD);
           se registra la relación hijo -> padre y el video NO entra al índice.
         - si no: se inserta en el índice y se registra como único.
      4) `on_complete(verdict)` siempre que haya veredicto: la dedupe es
         informativa y nunca bloquea la publicación normal.

    Garantías:
      - Sin reintentos internos: errores de hash o de persistencia se propagan.
      - Re-invocar con el mismo id es seguro (insert idempotente por reemplazo).
    """

    settings: Settings
    index: HammingIndex
    store: FingerprintStore
    executor: Optional[Executor] = None
    _register_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    async def deduplicate(
        self,
        video_id: str,
        source: VideoSource,
        on_complete: Optional[CompletionCallback] = None,
    ) -> DuplicateVerdict:
        logger.info("Calculando videohash para %s (%s)", video_id, source)
        fingerprint = await compute_fingerprint(source, self.settings, self.executor)

        await asyncio.to_thread(self.store.save_fingerprint, video_id, fingerprint)

        # La reconstrucción MIH es O(N): fuera del event loop.
        verdict = await self._run_sync(self._classify_and_register, video_id, fingerprint)
        if verdict.is_duplicate:
            logger.info(
                "Duplicado detectado: video_id [%s], padre [%s], similitud=%.2f (%s)",
                video_id, verdict.matched_id, verdict.similarity, verdict.kind,
            )
            await asyncio.to_thread(
                self.store.record_duplicate,
                video_id, verdict.matched_id, verdict.similarity, verdict.exact,
            )
        else:
            logger.info("Video único registrado: video_id [%s]", video_id)
            await asyncio.to_thread(self.store.record_unique, video_id, fingerprint)

        if on_complete is not None:
            result = on_complete(verdict)
            if inspect.isawaitable(result):
                await result
        return verdict

    def classify(self, video_id: str, fingerprint: VideoFingerprint) -> DuplicateVerdict:
        """Compara contra el índice sin modificar nada."""

        match = self._best_match(video_id, fingerprint)
        if match is None:
            return DuplicateVerdict(video_id, fingerprint, "unique")

        matched_id, distance = match
        similarity = similarity_percent(distance)
        kind = classify(similarity, self.settings.DUP_THRESHOLD, self.settings.EXACT_DUP_THRESHOLD)
        if kind == "unique":
            return DuplicateVerdict(video_id, fingerprint, "unique", similarity=similarity, distance=distance)
        return DuplicateVerdict(video_id, fingerprint, kind, matched_id, similarity, distance)

    def _classify_and_register(self, video_id: str, fingerprint: VideoFingerprint) -> DuplicateVerdict:
        # Clasificar + insertar bajo el mismo lock: dos copias concurrentes no
        # pueden salir ambas como únicas.
        with self._register_lock:
            verdict = self.classify(video_id, fingerprint)
            if not verdict.is_duplicate:
                self.index.insert(video_id, fingerprint)
            return verdict

    def _best_match(self, video_id: str, fingerprint: VideoFingerprint) -> Optional[Tuple[str, int]]:
        hit = self.index.nearest(fingerprint)
        if hit is None or hit[0] != video_id:
            return hit
        # Re-proceso del mismo id: buscar el mejor que no sea él mismo.
        max_distance = max_distance_for_threshold(self.settings.DUP_THRESHOLD)
        for other, distance in self.index.within_distance(fingerprint, max_distance):
            if other != video_id:
                return other, distance
        return None

    async def _run_sync(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, fn, *args)

    async def forget(self, video_id: str) -> Optional[str]:
        """
        Saca un video de la deduplicación (p. ej. al borrar el post).

        Si otros videos estaban registrados como duplicados suyos, el más antiguo
        con huella conocida pasa a ser el nuevo padre (entra al índice como único)
        y el resto se re-apunta a él. Los hijos sin huella guardada no se pueden
        re-apuntar: se les quita el vínculo al padre borrado.

        Returns:
            id promovido o None.
        """
        removed = await self._run_sync(self.index.remove, video_id)
        children = await asyncio.to_thread(self.store.duplicates_of, video_id)

        promoted: Optional[str] = None
        promoted_fp: Optional[VideoFingerprint] = None
        remaining = []
        for child in children:
            fp = await asyncio.to_thread(self.store.get_fingerprint, child)
            if fp is None:
                logger.warning("Hijo %s de %s sin huella guardada; se desvincula", child, video_id)
                await asyncio.to_thread(self.store.unlink_duplicate, child)
                continue
            if promoted is None:
                promoted, promoted_fp = child, fp
            else:
                remaining.append((child, fp))

        if promoted is not None:
            await self._run_sync(self.index.insert, promoted, promoted_fp)
            await asyncio.to_thread(self.store.record_unique, promoted, promoted_fp)
            for child, fp in remaining:
                similarity = fp.similarity(promoted_fp)
                await asyncio.to_thread(
                    self.store.record_duplicate,
                    child, promoted, similarity, similarity >= self.settings.EXACT_DUP_THRESHOLD,
                )
            logger.info("Padre %s eliminado; %s promovido (%d hijos re-apuntados)", video_id, promoted, len(remaining))

        await asyncio.to_thread(self.store.delete, video_id)
        logger.info("Video %s olvidado (estaba en índice: %s)", video_id, removed)
        return promoted


async def deduplicate(
    video_id: str,
    video_source: VideoSource,
    persistence: FingerprintStore,
    index: HammingIndex,
    settings: Optional[Settings] = None,
    executor: Optional[Executor] = None,
    on_complete: Optional[CompletionCallback] = None,
) -> DuplicateVerdict:
    """Atajo funcional sobre `DedupService.deduplicate`."""

    service = DedupService(settings or get_settings(), index, persistence, executor)
    return await service.deduplicate(video_id, video_source, on_complete=on_complete)
