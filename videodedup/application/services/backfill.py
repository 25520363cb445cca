import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from videodedup.application.services.dedup_service import DedupService
from videodedup.errors import HashError
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.infrastructure.sources import VideoSource
from videodedup.infrastructure.store import FingerprintStore

logger = logging.getLogger(__name__)


def preload_index(store: FingerprintStore, index: HammingIndex, batch_size: int = 1000) -> int:
    """
    Carga al índice todas las huellas únicas persistidas.
    Un `batch_insert` por lote: una invalidación por lote, no por video.
    """
    loaded = 0
    for batch in store.iter_unique(batch_size):
        loaded += index.batch_insert(batch)
        logger.info("Preload: %d huellas cargadas", loaded)
    logger.info("Preload completo: %d huellas en índice", len(index))
    return loaded


@dataclass
class BackfillReport:
    processed: int = 0
    unique: int = 0
    duplicates: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "unique": self.unique,
            "duplicates": self.duplicates,
            "failed": self.failed,
            "failures": [{"video_id": v, "error": e} for v, e in self.failures],
        }


@dataclass
class BackfillRunner:
    """Deduplica videos históricos con paralelismo acotado; un fallo no corta el lote."""

    service: DedupService

    async def run(self, items: Iterable[Tuple[str, VideoSource]], parallelism: int = 10) -> BackfillReport:
        report = BackfillReport()
        sem = asyncio.Semaphore(max(1, parallelism))

        async def _one(video_id: str, source: VideoSource):
            async with sem:
                try:
                    verdict = await self.service.deduplicate(video_id, source)
                except HashError as e:
                    logger.warning("Backfill: no se pudo hashear %s: %s", video_id, e)
                    report.failed += 1
                    report.failures.append((video_id, str(e)))
                    return
                except Exception as e:
                    logger.exception("Backfill: error procesando %s", video_id)
                    report.failed += 1
                    report.failures.append((video_id, repr(e)))
                    return
                report.processed += 1
                if verdict.is_duplicate:
                    report.duplicates += 1
                else:
                    report.unique += 1

        await asyncio.gather(*(_one(vid, src) for vid, src in items))
        logger.info(
            "Backfill terminado: %d procesados (%d únicos, %d duplicados), %d fallidos",
            report.processed, report.unique, report.duplicates, report.failed,
        )
        return report
