import logging
import os

import yt_dlp

from videodedup.errors import SourceUnavailable

"""
Descarga de videos a MP4 con yt_dlp (URLs directas de storage o plataformas).
"""

logger = logging.getLogger(__name__)


def download_video(url: str, output_folder: str, size_mb_limit: int = 200, timeout_s: int = 30) -> str:
    """
    Descarga un video a `output_folder` usando yt_dlp.

    Args:
        url: URL del video.
        output_folder: carpeta destino.
        size_mb_limit: límite duro de tamaño.
        timeout_s: timeout de socket.

    Returns:
        ruta absoluta del archivo descargado.
    Raises:
        SourceUnavailable si la descarga falla.
    """

    os.makedirs(output_folder, exist_ok=True)

    opts = {
        "outtmpl": os.path.join(output_folder, "video.%(ext)s"),
        "format": "mp4/bestvideo+bestaudio/best",
        "merge_output_format": "mp4",
        "noplaylist": True,
        "retries": 5,
        "fragment_retries": 5,
        "concurrent_fragment_downloads": 1,
        "max_filesize": size_mb_limit * 1024 * 1024,
        "socket_timeout": timeout_s,
        "quiet": True,
        "no_warnings": True,
    }

    logger.info("Descargando video desde: %s", url)
    try:
        with yt_dlp.YoutubeDL(opts) as ydl:
            info = ydl.extract_info(url, download=True)
            filename = ydl.prepare_filename(info)
    except yt_dlp.utils.DownloadError as e:
        raise SourceUnavailable(f"No se pudo descargar {url}: {e}") from e

    if not os.path.exists(filename):
        raise SourceUnavailable(f"yt_dlp no dejó archivo para {url} (¿excede {size_mb_limit} MB?)")
    return os.path.abspath(filename)
