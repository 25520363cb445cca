import asyncio
import json
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from videodedup.application.services.backfill import preload_index
from videodedup.application.services.dedup_service import DedupService, DuplicateVerdict
from videodedup.errors import HashError
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.infrastructure.redisdb.client import get_redis
from videodedup.infrastructure.settings import get_settings
from videodedup.infrastructure.sources import source_for
from videodedup.infrastructure.store import build_store

"""
Worker de deduplicación sobre Redis Streams.

- Lee {video_id, video_url} de DEDUP_STREAM (consumer group WORKER_GROUP).
- Publica el veredicto (JSON en el campo `payload`) en VERDICT_STREAM.
- Fallos permanentes (video no hasheable, mensaje mal formado): se publica un
  evento `failed` y se hace XACK; reintentar no cambiaría el resultado.
- Fallos transitorios (store, red): sin XACK. El mensaje queda pendiente y se
  reclama con XAUTOCLAIM al arrancar y cada WORKER_RECLAIM_INTERVAL_S.
"""

CONSUMER = os.getenv("HOSTNAME", "consumer-1")
PUBLISHER_FIELDS = ("canister_id", "publisher_principal", "post_id")

logger = logging.getLogger("worker")


def _text(value):
    return value.decode() if isinstance(value, bytes) else value


def _field(fields: dict, name: str):
    return _text(fields.get(name.encode(), fields.get(name)))


def ensure_group(redis, stream: str, group: str) -> None:
    try:
        redis.xgroup_create(stream, group, id="0-0", mkstream=True)
    except Exception as e:
        # BUSYGROUP: el grupo ya existe
        if "BUSYGROUP" not in str(e):
            raise


async def _publish(redis, stream: str, payload: dict, fields: dict) -> None:
    for key in PUBLISHER_FIELDS:
        payload[key] = _field(fields, key)
    await asyncio.to_thread(redis.xadd, stream, {"payload": json.dumps(payload)})


async def handle_message(service: DedupService, redis, fields: dict) -> DuplicateVerdict:
    settings = service.settings
    video_id = _field(fields, "video_id")
    location = _field(fields, "video_url") or _field(fields, "url")
    if not video_id or not location:
        raise ValueError(f"Mensaje sin video_id/video_url: {fields!r}")

    async def publish(verdict: DuplicateVerdict):
        payload = verdict.to_dict()
        payload["exact_duplicate"] = verdict.exact
        await _publish(redis, settings.VERDICT_STREAM, payload, fields)

    return await service.deduplicate(video_id, source_for(location, settings), on_complete=publish)


async def process_messages(service: DedupService, redis, messages) -> int:
    """Procesa una tanda [(id, fields)]; devuelve cuántos se confirmaron con XACK."""

    settings = service.settings
    acked = 0
    for msg_id, fields in messages:
        # fields None: XAUTOCLAIM devolvió una entrada ya borrada del stream
        if fields is not None:
            try:
                await handle_message(service, redis, fields)
            except (HashError, ValueError) as e:
                logger.warning("[worker] %s descartado: %s", msg_id, e)
                failure = {"video_id": _field(fields, "video_id"), "kind": "failed", "error": str(e)}
                await _publish(redis, settings.VERDICT_STREAM, failure, fields)
            except Exception:
                logger.exception("[worker] error procesando %s; queda pendiente", msg_id)
                continue
        await asyncio.to_thread(redis.xack, settings.DEDUP_STREAM, settings.WORKER_GROUP, msg_id)
        acked += 1
    return acked


async def reclaim_pending(service: DedupService, redis, min_idle_ms: Optional[int] = None) -> int:
    """
    Reprocesa entradas pendientes (sin XACK) ociosas por más de `min_idle_ms`:
    las propias de una corrida anterior o las de un consumidor caído.
    """
    settings = service.settings
    if min_idle_ms is None:
        min_idle_ms = settings.WORKER_RECLAIM_IDLE_MS

    start, acked = "0-0", 0
    while True:
        resp = await asyncio.to_thread(
            redis.xautoclaim, settings.DEDUP_STREAM, settings.WORKER_GROUP, CONSUMER,
            min_idle_ms, start_id=start, count=10,
        )
        # Redis >= 7 agrega una tercera lista con los ids borrados
        start, messages = _text(resp[0]), resp[1]
        if messages:
            logger.info("[worker] reclamados %d mensajes pendientes", len(messages))
            acked += await process_messages(service, redis, messages)
        if start == "0-0":
            return acked


async def consume(service: DedupService, redis, max_polls: Optional[int] = None) -> None:
    settings = service.settings
    stream, group = settings.DEDUP_STREAM, settings.WORKER_GROUP

    await reclaim_pending(service, redis)
    last_reclaim = time.monotonic()
    polls = 0
    while max_polls is None or polls < max_polls:
        polls += 1
        if time.monotonic() - last_reclaim >= settings.WORKER_RECLAIM_INTERVAL_S:
            await reclaim_pending(service, redis)
            last_reclaim = time.monotonic()

        resp = await asyncio.to_thread(
            redis.xreadgroup, group, CONSUMER, {stream: ">"}, count=10, block=5000
        )
        for _stream, messages in resp or []:
            await process_messages(service, redis, messages)


async def run() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    redis = get_redis(settings.REDIS_URL)
    ensure_group(redis, settings.DEDUP_STREAM, settings.WORKER_GROUP)

    store = build_store(settings)
    index = HammingIndex()
    if settings.PRELOAD_ON_STARTUP:
        await asyncio.to_thread(preload_index, store, index, settings.PRELOAD_BATCH_SIZE)

    with ThreadPoolExecutor(max_workers=settings.HASH_WORKERS) as executor:
        service = DedupService(settings, index, store, executor)
        logger.info("[worker] started (%s/%s como %s)", settings.DEDUP_STREAM, settings.WORKER_GROUP, CONSUMER)
        await consume(service, redis)


def main():
    asyncio.run(run())

if __name__ == "__main__":
    main()
