import os
from functools import lru_cache
from typing import Optional

import redis as _redis

"""
Cliente Redis compartido. Usa REDIS_URL o 'redis://localhost:6379/0'.
decode_responses=False porque guardamos binarios; decodificamos a mano.
"""

@lru_cache
def get_redis(url: Optional[str] = None) -> _redis.Redis:
    return _redis.from_url(url or os.getenv("REDIS_URL", "redis://localhost:6379/0"), decode_responses=False)
