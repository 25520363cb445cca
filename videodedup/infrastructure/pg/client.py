import logging
import threading
from typing import Dict, Optional

from psycopg_pool import ConnectionPool

"""
Pools Postgres (psycopg v3) compartidos por DSN.
Se abren la primera vez que se piden y se cierran en el shutdown de la app.
"""

logger = logging.getLogger(__name__)

_POOLS: Dict[str, ConnectionPool] = {}
_LOCK = threading.Lock()


def get_pool(dsn: Optional[str], max_size: int = 5) -> ConnectionPool:
    if not dsn:
        raise RuntimeError("PG_DSN no definido (requerido por STORE_BACKEND con 'pg')")
    with _LOCK:
        pool = _POOLS.get(dsn)
        if pool is None:
            logger.info("Abriendo pool Postgres (max_size=%d)", max_size)
            pool = ConnectionPool(conninfo=dsn, min_size=1, max_size=max_size, kwargs={"autocommit": True})
            _POOLS[dsn] = pool
        return pool


def close_pools() -> None:
    with _LOCK:
        pools = list(_POOLS.values())
        _POOLS.clear()
    for pool in pools:
        pool.close()
