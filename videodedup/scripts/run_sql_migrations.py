"""
Ejecutor de migraciones SQL en arranque.

- Lee todos los .sql de videodedup/infrastructure/pg/migrations (orden alfabético).
- Se conecta con psycopg (v3) usando PG_DSN (añade sslmode=require si falta).
- Reintenta la conexión hasta que la DB esté disponible.
- Sólo corre si STORE_BACKEND usa Postgres ("pg" o "redis+pg").
"""

import glob
import logging
import sys
import time
from pathlib import Path
from typing import List

import psycopg

from videodedup.infrastructure.settings import get_settings

logger = logging.getLogger("migrations")

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "infrastructure" / "pg" / "migrations"


def _dsn_with_ssl(dsn: str) -> str:
    if "sslmode=" not in dsn:
        sep = "&" if "?" in dsn else "?"
        dsn = f"{dsn}{sep}sslmode=require"
    return dsn


def _wait_for_db_and_connect(dsn: str, attempts: int = 40, sleep_s: float = 2.0):
    last_err = None
    for i in range(attempts):
        try:
            return psycopg.connect(dsn, autocommit=False)
        except psycopg.OperationalError as e:
            last_err = e
            logger.info("intento %d/%d -> DB no lista aún: %s", i + 1, attempts, e)
            time.sleep(sleep_s)
    logger.error("no se pudo conectar a la DB luego de %.0fs: %s", attempts * sleep_s, last_err)
    sys.exit(1)


def _list_sql_files(folder: Path) -> List[Path]:
    if not folder.exists():
        logger.warning("carpeta no encontrada: %s (se omiten migraciones)", folder)
        return []
    return sorted(Path(p) for p in glob.glob(str(folder / "*.sql")))


def main():
    logging.basicConfig(level=logging.INFO, format="[migrations] %(levelname)s %(message)s")
    settings = get_settings()
    if "pg" not in settings.STORE_BACKEND.lower():
        logger.info("STORE_BACKEND=%s -> se omiten migraciones.", settings.STORE_BACKEND)
        return

    if not settings.PG_DSN:
        logger.error("PG_DSN vacío.")
        sys.exit(1)

    files = _list_sql_files(MIGRATIONS_DIR)
    if not files:
        logger.info("no hay archivos .sql en %s. Nada que aplicar.", MIGRATIONS_DIR)
        return

    logger.info("aplicando %d archivo(s) desde %s...", len(files), MIGRATIONS_DIR)
    with _wait_for_db_and_connect(_dsn_with_ssl(settings.PG_DSN)) as conn:
        with conn.cursor() as cur:
            for fp in files:
                sql = fp.read_text(encoding="utf-8")
                if not sql.strip():
                    logger.info("%s: vacío. se omite.", fp.name)
                    continue
                try:
                    cur.execute(sql)  # psycopg3 soporta múltiples statements separados por ;
                    conn.commit()
                    logger.info("OK  %s", fp.name)
                except psycopg.Error as e:
                    conn.rollback()
                    logger.error("ERROR en %s: %s", fp.name, e)
                    sys.exit(1)

    logger.info("todas las migraciones aplicadas correctamente.")


if __name__ == "__main__":
    main()
