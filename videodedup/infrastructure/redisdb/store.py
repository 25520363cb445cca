import json
import time
from typing import Iterator, List, Optional

from videodedup.infrastructure.bitpack import VideoFingerprint

"""
Almacenamiento de huellas en Redis.

Estructura:
- videohash:{video_id} (HASH) -> { hash (64 chars), code_b (8 bytes), ts (ms) }
- videohash:unique (HASH) -> video_id -> code_b      (se recarga al índice al arrancar)
- videohash:parent (HASH) -> hijo -> JSON {parent, similarity, exact}
- videohash:dup:{parent} (ZSET) -> hijos scoreados por timestamp

Nota: guardamos **binarios empaquetados**; al leer, convertimos a VideoFingerprint.
"""

UNIQUE_KEY = "videohash:unique"
PARENT_KEY = "videohash:parent"


def _b(s): return s if isinstance(s, bytes) else s.encode()
def _d(b): return b.decode() if isinstance(b, bytes) else b

def _vid_key(video_id: str) -> str:     return f"videohash:{video_id}"
def _children_key(parent_id: str) -> str: return f"videohash:dup:{parent_id}"


class RedisFingerprintStore:
    def __init__(self, client):
        self.redis = client

    def save_fingerprint(self, video_id: str, fingerprint: VideoFingerprint) -> None:
        self.redis.hset(_vid_key(video_id), mapping={
            b"hash":   _b(fingerprint.bits),
            b"code_b": fingerprint.to_bytes(),
            b"ts":     _b(str(int(time.time() * 1000))),
        })

    def record_unique(self, video_id: str, fingerprint: VideoFingerprint) -> None:
        pipe = self.redis.pipeline()
        pipe.hset(UNIQUE_KEY, _b(video_id), fingerprint.to_bytes())
        pipe.hdel(PARENT_KEY, _b(video_id))
        pipe.execute()

    def record_duplicate(self, video_id: str, parent_id: str, similarity: float, exact: bool) -> None:
        previous = self.redis.hget(PARENT_KEY, _b(video_id))
        pipe = self.redis.pipeline()
        if previous:
            pipe.zrem(_children_key(json.loads(_d(previous))["parent"]), _b(video_id))
        pipe.hset(PARENT_KEY, _b(video_id), _b(json.dumps({
            "parent": parent_id, "similarity": float(similarity), "exact": bool(exact),
        })))
        pipe.zadd(_children_key(parent_id), {_b(video_id): time.time()})
        pipe.execute()

    def get_fingerprint(self, video_id: str) -> Optional[VideoFingerprint]:
        code_b = self.redis.hget(_vid_key(video_id), b"code_b")
        if not code_b:
            code_b = self.redis.hget(UNIQUE_KEY, _b(video_id))
        return VideoFingerprint.from_bytes(code_b) if code_b else None

    def duplicates_of(self, parent_id: str) -> List[str]:
        return [_d(v) for v in self.redis.zrange(_children_key(parent_id), 0, -1)]

    def unlink_duplicate(self, video_id: str) -> None:
        """Quita el vínculo hijo -> padre sin tocar la huella."""

        previous = self.redis.hget(PARENT_KEY, _b(video_id))
        if not previous:
            return
        pipe = self.redis.pipeline()
        pipe.zrem(_children_key(json.loads(_d(previous))["parent"]), _b(video_id))
        pipe.hdel(PARENT_KEY, _b(video_id))
        pipe.execute()

    def delete(self, video_id: str) -> None:
        previous = self.redis.hget(PARENT_KEY, _b(video_id))
        pipe = self.redis.pipeline()
        if previous:
            pipe.zrem(_children_key(json.loads(_d(previous))["parent"]), _b(video_id))
        pipe.delete(_vid_key(video_id))
        pipe.hdel(UNIQUE_KEY, _b(video_id))
        pipe.hdel(PARENT_KEY, _b(video_id))
        pipe.delete(_children_key(video_id))
        pipe.execute()

    def iter_unique(self, batch_size: int = 1000) -> Iterator[List]:
        batch = []
        for vid, code_b in self.redis.hscan_iter(UNIQUE_KEY, count=batch_size):
            if len(code_b) != 8:
                continue
            batch.append((_d(vid), VideoFingerprint.from_bytes(code_b)))
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch
