import asyncio
import glob
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from typing import Iterator, List, Optional

import cv2
import numpy as np

from videodedup.errors import ExtractionFailed, NoFramesProduced

"""
Muestreo de frames con ffmpeg:
- ffprobe para la duración.
- Intervalo adaptativo según tamaño de archivo y duración.
- Frames JPEG a alto fijo en un directorio scratch (RAM si hay /dev/shm),
  que se borra SIEMPRE (éxito, error, timeout o cancelación).
"""

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame_%04d.jpg"


def scratch_base_dir(preferred: Optional[str] = None) -> str:
    """Directorio base para archivos temporales: preferido > /dev/shm > /run/user/<uid> > tmp."""

    if preferred:
        return preferred
    if os.path.isdir("/dev/shm"):
        return "/dev/shm"
    run_user = f"/run/user/{os.getuid()}" if hasattr(os, "getuid") else None
    if run_user and os.path.isdir(run_user):
        return run_user
    return tempfile.gettempdir()


@contextmanager
def scratch_dir(prefix: str = "videohash_", base_dir: Optional[str] = None) -> Iterator[str]:
    """Crea un directorio temporal aislado y lo elimina al salir (incluye excepciones y cancelación)."""

    root = tempfile.mkdtemp(prefix=prefix, dir=scratch_base_dir(base_dir))
    logger.debug("Directorio scratch: %s", root)
    try:
        yield root
    finally:
        shutil.rmtree(root, ignore_errors=True)


def sampling_interval(
    duration_s: Optional[float],
    file_size: int,
    default_interval_s: float = 1.0,
    small_file_interval_s: float = 2.0,
    small_file_bytes: int = 10_000_000,
    max_frames: int = 60,
) -> float:
    """
    Segundos entre frames.

    - Archivos chicos: intervalo más largo (menos frames).
    - Videos largos (> max_frames * 2 s): duración / max_frames, para acotar el total.
    - Resto (o duración desconocida): intervalo por defecto.
    """
    if file_size < small_file_bytes:
        return small_file_interval_s
    if duration_s and duration_s > max_frames * 2.0:
        return duration_s / float(max_frames)
    return default_interval_s


def select_evenly(paths: List[str], max_frames: int) -> List[str]:
    """Si hay más de `max_frames`, toma 1 de cada N (no recorta por un extremo)."""

    if len(paths) <= max_frames:
        return list(paths)
    step = len(paths) // max_frames
    return paths[::step][:max_frames]


async def _run(cmd: List[str], timeout_s: float) -> tuple[int, bytes]:
    """Ejecuta un proceso; lo mata si excede el timeout o si la tarea se cancela."""

    logger.debug("Ejecutando: %s", " ".join(cmd))
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        raise ExtractionFailed(f"{cmd[0]} excedió el timeout de {timeout_s:.0f}s") from None
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
    if proc.returncode != 0:
        logger.debug("%s stderr: %s", cmd[0], stderr.decode(errors="replace")[-500:])
    return proc.returncode, stdout


async def probe_duration(video_path: str, timeout_s: float = 30.0) -> Optional[float]:
    """Duración en segundos vía ffprobe; None si no se puede determinar."""

    cmd = [
        "ffprobe", "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        video_path,
    ]
    try:
        code, out = await _run(cmd, timeout_s)
    except (ExtractionFailed, OSError) as e:
        logger.warning("ffprobe falló para %s: %s", video_path, e)
        return None
    if code != 0:
        return None
    try:
        duration = float(out.decode().strip())
    except ValueError:
        return None
    return duration if duration > 0 else None


async def extract_frame_files(
    video_path: str,
    out_dir: str,
    interval_s: float,
    frame_size: int = 144,
    timeout_s: float = 120.0,
) -> List[str]:
    """
    Extrae 1 frame cada `interval_s` segundos, escalado a alto `frame_size`.

    Returns:
        Rutas ordenadas de los JPEG generados.
    Raises:
        ExtractionFailed si ffmpeg devuelve != 0 o excede el timeout.
    """
    cmd = [
        "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
        "-threads", "0",
        "-i", video_path,
        "-vf", f"fps=1/{interval_s},scale=-2:{frame_size}",
        "-q:v", "2",
        os.path.join(out_dir, FRAME_PATTERN),
    ]
    try:
        code, _ = await _run(cmd, timeout_s)
    except OSError as e:
        raise ExtractionFailed(f"No se pudo ejecutar ffmpeg: {e}") from e
    if code != 0:
        raise ExtractionFailed(f"ffmpeg terminó con código {code}", returncode=code)
    return sorted(glob.glob(os.path.join(out_dir, "*.jpg")))


def decode_frames(paths: List[str]) -> List[np.ndarray]:
    """Lee JPEGs a BGR uint8; descarta los que no se pueden decodificar."""

    frames = []
    for p in paths:
        img = cv2.imread(p, cv2.IMREAD_COLOR)
        if img is None:
            logger.debug("Frame ilegible, se omite: %s", p)
            continue
        frames.append(img)
    return frames


async def sample_frames(video_path: str, settings, executor=None) -> List[np.ndarray]:
    """
    Muestrea y decodifica frames de un video local.

    La decodificación corre en `executor` (pool de CPU) para no bloquear el loop.
    Puede devolver lista vacía si todos los JPEG resultaron ilegibles
    (el generador de huellas lo reporta como NoUsableFrames).

    Raises:
        ExtractionFailed, NoFramesProduced
    """
    duration = await probe_duration(video_path, timeout_s=min(30.0, settings.EXTRACT_TIMEOUT_S))
    try:
        file_size = os.path.getsize(video_path)
    except OSError:
        file_size = 0

    interval = sampling_interval(
        duration, file_size,
        default_interval_s=settings.SAMPLE_INTERVAL_S,
        small_file_interval_s=settings.SMALL_FILE_INTERVAL_S,
        small_file_bytes=settings.SMALL_FILE_BYTES,
        max_frames=settings.MAX_FRAMES,
    )

    with scratch_dir(base_dir=settings.SCRATCH_DIR) as root:
        paths = await extract_frame_files(
            video_path, root, interval,
            frame_size=settings.FRAME_SIZE,
            timeout_s=settings.EXTRACT_TIMEOUT_S,
        )
        if not paths:
            raise NoFramesProduced(f"ffmpeg no generó frames para {video_path}")

        selected = select_evenly(paths, settings.MAX_FRAMES)
        logger.info(
            "Frames extraídos: %d (seleccionados %d, intervalo %.2fs, duración %s)",
            len(paths), len(selected), interval, duration,
        )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, decode_frames, selected)
