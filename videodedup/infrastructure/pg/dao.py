from typing import Iterator, List, Optional

from videodedup.infrastructure.bitpack import VideoFingerprint

"""
DAO de Postgres para huellas de video.
- Esquema en videodedup/infrastructure/pg/migrations/001_init.sql
- Upserts idempotentes (ON CONFLICT): re-procesar un video reemplaza su fila.
"""


class PgFingerprintStore:
    def __init__(self, pool):
        self.pool = pool

    def save_fingerprint(self, video_id: str, fingerprint: VideoFingerprint) -> None:
        """Guarda todo hash calculado (tabla `videohash_original`)."""

        with self.pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO videohash_original (video_id, videohash)
                VALUES (%s, %s)
                ON CONFLICT (video_id) DO UPDATE SET videohash = EXCLUDED.videohash
                """,
                (video_id, fingerprint.bits),
            )

    def record_unique(self, video_id: str, fingerprint: VideoFingerprint) -> None:
        with self.pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO video_unique (video_id, videohash)
                VALUES (%s, %s)
                ON CONFLICT (video_id) DO UPDATE SET videohash = EXCLUDED.videohash
                """,
                (video_id, fingerprint.bits),
            )
            cur.execute("DELETE FROM video_duplicate WHERE video_id = %s", (video_id,))

    def record_duplicate(self, video_id: str, parent_id: str, similarity: float, exact: bool) -> None:
        with self.pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO video_duplicate (video_id, parent_video_id, similarity, exact_duplicate)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (video_id) DO UPDATE SET
                    parent_video_id = EXCLUDED.parent_video_id,
                    similarity = EXCLUDED.similarity,
                    exact_duplicate = EXCLUDED.exact_duplicate
                """,
                (video_id, parent_id, float(similarity), bool(exact)),
            )

    def get_fingerprint(self, video_id: str) -> Optional[VideoFingerprint]:
        with self.pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                """
                SELECT videohash FROM videohash_original WHERE video_id = %s
                UNION ALL
                SELECT videohash FROM video_unique WHERE video_id = %s
                LIMIT 1
                """,
                (video_id, video_id),
            )
            row = cur.fetchone()
        return VideoFingerprint.from_bits(row[0]) if row else None

    def duplicates_of(self, parent_id: str) -> List[str]:
        """Hijos de un padre, del más antiguo al más nuevo."""

        with self.pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                "SELECT video_id FROM video_duplicate WHERE parent_video_id = %s ORDER BY created_at, video_id",
                (parent_id,),
            )
            rows = cur.fetchall()
        return [r[0] for r in rows]

    def unlink_duplicate(self, video_id: str) -> None:
        with self.pool.connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM video_duplicate WHERE video_id = %s", (video_id,))

    def delete(self, video_id: str) -> None:
        with self.pool.connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM video_duplicate WHERE video_id = %s", (video_id,))
            cur.execute("DELETE FROM video_unique WHERE video_id = %s", (video_id,))
            cur.execute("DELETE FROM videohash_original WHERE video_id = %s", (video_id,))

    def iter_unique(self, batch_size: int = 1000) -> Iterator[List]:
        """Recorre `video_unique` en lotes (ORDER BY video_id, LIMIT/OFFSET)."""

        offset = 0
        while True:
            with self.pool.connection() as conn, conn.cursor() as cur:
                cur.execute(
                    "SELECT video_id, videohash FROM video_unique ORDER BY video_id LIMIT %s OFFSET %s",
                    (batch_size, offset),
                )
                rows = cur.fetchall()
            if not rows:
                return
            yield [(vid, VideoFingerprint.from_bits(h)) for vid, h in rows if vid and h]
            offset += len(rows)
