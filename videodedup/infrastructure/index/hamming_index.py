import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from videodedup.errors import IndexInconsistency, InvalidCodeLength
from videodedup.infrastructure.bitpack import VideoFingerprint, code_from_text
from videodedup.infrastructure.index.mih import MultiIndexHash
from videodedup.services.similarity import max_distance_for_threshold, similarity_percent

"""
Índice Hamming en memoria: id de video -> código de 64 bits.

- El dict `id -> código` es la fuente de verdad.
- La estructura MIH es derivada y desechable. Estado explícito:
    Fresh(mih, ids, version)  |  STALE
  Toda mutación invalida (-> STALE); la próxima consulta reconstruye.
- Dos RWLock independientes (mapa y estructura derivada). Nunca se toma el
  lock del mapa en modo escritura teniendo el de la estructura: orden
  estructura -> mapa cuando se anidan.
"""

logger = logging.getLogger(__name__)

CodeLike = Union[int, str, VideoFingerprint]


class RWLock:
    """Lock lectores/escritor con preferencia de escritura (no reentrante)."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class Fresh:
    """Estructura derivada construida a partir del mapa en `version`."""
    mih: MultiIndexHash
    ids: Tuple[str, ...]
    version: int


class _Stale:
    def __repr__(self) -> str:
        return "STALE"


STALE = _Stale()


def as_code(value: CodeLike) -> int:
    """Normaliza huella / texto '0'/'1' / entero a código de 64 bits."""

    if isinstance(value, VideoFingerprint):
        return value.code
    if isinstance(value, str):
        return code_from_text(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return VideoFingerprint(value).code
    raise InvalidCodeLength(f"Tipo de hash no soportado: {type(value).__name__}")


class HammingIndex:
    """
    Conjunto dinámico (id, código) con consultas por proximidad Hamming.

    Pensado para muchos lectores concurrentes y escrituras ocasionales.
    Para cargas masivas usar `batch_insert` (una sola invalidación).
    """

    def __init__(self, blocks: int = 4):
        self.blocks = blocks
        self._codes: Dict[str, int] = {}
        self._version = 0
        self._map_lock = RWLock()
        self._state: Union[Fresh, _Stale] = STALE
        self._state_lock = RWLock()

    # --- mutaciones ------------------------------------------------------

    def insert(self, video_id: str, code: CodeLike) -> None:
        """Upsert: reemplaza el código previo de `video_id` si existía."""
        value = as_code(code)
        with self._map_lock.write():
            self._codes[video_id] = value
            self._version += 1
        self.invalidate()

    def batch_insert(self, entries: Iterable[Tuple[str, CodeLike]]) -> int:
        """Equivalente a N `insert`, pero con una sola escritura del mapa e invalidación."""
        values = [(vid, as_code(code)) for vid, code in entries]
        if not values:
            return 0
        with self._map_lock.write():
            for vid, value in values:
                self._codes[vid] = value
            self._version += 1
        self.invalidate()
        return len(values)

    def remove(self, video_id: str) -> bool:
        with self._map_lock.write():
            removed = self._codes.pop(video_id, None) is not None
            if removed:
                self._version += 1
        if removed:
            self.invalidate()
        return removed

    def clear(self) -> None:
        with self._map_lock.write():
            self._codes.clear()
            self._version += 1
        self.invalidate()

    # --- estado derivado -------------------------------------------------

    def invalidate(self) -> None:
        with self._state_lock.write():
            self._state = STALE

    def rebuild(self) -> None:
        """Reconstruye la estructura MIH desde una foto del mapa."""
        with self._state_lock.write():
            self._rebuild_locked(force=True)

    def _rebuild_locked(self, force: bool) -> None:
        with self._map_lock.read():
            version = self._version
            state = self._state
            if not force and isinstance(state, Fresh) and state.version == version:
                return
            ids = tuple(self._codes.keys())
            codes = [self._codes[i] for i in ids]
        # La construcción corre sin el lock del mapa: las inserciones no esperan.
        self._state = Fresh(MultiIndexHash(codes, blocks=self.blocks), ids, version)
        logger.debug("Índice MIH reconstruido: %d entradas (v%d)", len(ids), version)

    @property
    def is_fresh(self) -> bool:
        with self._state_lock.read():
            state = self._state
            with self._map_lock.read():
                return isinstance(state, Fresh) and state.version == self._version

    def _query(self, search) -> List[Tuple[str, int]]:
        """Corre `search(mih)` sobre una estructura vigente y traduce posiciones a ids."""
        while True:
            with self._state_lock.read():
                state = self._state
                if isinstance(state, Fresh):
                    hits = search(state.mih)
                    with self._map_lock.read():
                        if state.version == self._version:
                            return [(self._resolve(state, pos), dist) for pos, dist in hits]
            with self._state_lock.write():
                self._rebuild_locked(force=False)

    def _resolve(self, state: Fresh, pos: int) -> str:
        """Posición MIH -> id. Requiere el lock del mapa y versión vigente."""
        if pos >= len(state.ids):
            logger.error("Posición MIH fuera de rango: %d (v%d)", pos, state.version)
            raise IndexInconsistency(f"#{pos}")
        video_id = state.ids[pos]
        if video_id not in self._codes:
            logger.error("Inconsistencia de índice: %s no está en el mapa (v%d)", video_id, state.version)
            raise IndexInconsistency(video_id)
        return video_id

    # --- consultas -------------------------------------------------------

    def nearest(self, code: CodeLike) -> Optional[Tuple[str, int]]:
        """(id, distancia) más cercano; None sólo si el índice está vacío. Empates sin orden garantizado."""
        query = as_code(code)

        def search(mih: MultiIndexHash):
            hit = mih.nearest(query)
            return [hit] if hit else []

        found = self._query(search)
        return found[0] if found else None

    def within_distance(self, code: CodeLike, max_distance: int) -> List[Tuple[str, int]]:
        """Todas las entradas con distancia <= max_distance, ordenadas por distancia ascendente."""
        query = as_code(code)
        found = self._query(lambda mih: mih.range_search(query, max_distance))
        found.sort(key=lambda item: item[1])
        return found

    def find_duplicates(
        self,
        candidates: Iterable[Tuple[str, CodeLike]],
        threshold_percent: float,
    ) -> Dict[str, List[Tuple[str, float]]]:
        """
        Para cada (id, código) candidato devuelve los ids indexados con similitud
        >= umbral (vía distancia máxima redondeada), excluyendo el propio id.
        Sólo se incluyen candidatos con al menos un match.
        """
        max_distance = max_distance_for_threshold(threshold_percent)
        results: Dict[str, List[Tuple[str, float]]] = {}
        for video_id, code in candidates:
            matches = [
                (other, similarity_percent(dist))
                for other, dist in self.within_distance(code, max_distance)
                if other != video_id
            ]
            if matches:
                results[video_id] = matches
        return results

    # --- utilidades ------------------------------------------------------

    def get(self, video_id: str) -> Optional[VideoFingerprint]:
        with self._map_lock.read():
            code = self._codes.get(video_id)
        return VideoFingerprint(code) if code is not None else None

    def __contains__(self, video_id: object) -> bool:
        with self._map_lock.read():
            return video_id in self._codes

    def __len__(self) -> int:
        with self._map_lock.read():
            return len(self._codes)

    def is_empty(self) -> bool:
        return len(self) == 0

    def stats(self) -> dict:
        return {"size": len(self), "fresh": self.is_fresh, "blocks": self.blocks}
