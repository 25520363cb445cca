import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol
from urllib.parse import urlparse

from videodedup.errors import SourceUnavailable
from videodedup.infrastructure.downloading.downloader import download_video
from videodedup.infrastructure.ffmpeg.frames import scratch_dir

"""
Fuentes de video: todo lo que el hasher necesita es una ruta local legible.
Las fuentes remotas se descargan a un directorio scratch que se borra al salir.
"""


class VideoSource(Protocol):
    def open(self) -> "AsyncIterator[str]":
        """Context manager asíncrono que entrega una ruta local al video."""
        ...


@dataclass(frozen=True)
class LocalVideoSource:
    path: str

    @asynccontextmanager
    async def open(self) -> AsyncIterator[str]:
        if not os.path.isfile(self.path):
            raise SourceUnavailable(f"No existe el archivo: {self.path}")
        yield self.path

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class UrlVideoSource:
    url: str
    size_mb_limit: int = 200
    timeout_s: int = 30
    scratch_base: Optional[str] = None

    @asynccontextmanager
    async def open(self) -> AsyncIterator[str]:
        with scratch_dir(prefix="download_", base_dir=self.scratch_base) as root:
            path = await asyncio.to_thread(
                download_video, self.url, root, self.size_mb_limit, self.timeout_s
            )
            yield path

    def __str__(self) -> str:
        return self.url


def source_for(location: str, settings=None) -> VideoSource:
    """URL http(s) -> UrlVideoSource; cualquier otra cosa -> ruta local."""

    if urlparse(location).scheme in ("http", "https"):
        if settings is None:
            return UrlVideoSource(location)
        return UrlVideoSource(
            location,
            size_mb_limit=settings.VIDEO_MAX_MB,
            timeout_s=settings.DL_TIMEOUT_S,
            scratch_base=settings.SCRATCH_DIR,
        )
    return LocalVideoSource(location)
