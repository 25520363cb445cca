import asyncio
import logging
import time
from concurrent.futures import Executor
from typing import List, Optional, Sequence

import numpy as np

from videodedup.errors import NoUsableFrames
from videodedup.infrastructure.bitpack import VideoFingerprint
from videodedup.infrastructure.cv.videohash import color_hash, combine_hashes, structural_hash
from videodedup.infrastructure.ffmpeg.frames import sample_frames
from videodedup.infrastructure.settings import Settings, get_settings
from videodedup.infrastructure.sources import VideoSource

logger = logging.getLogger(__name__)


async def fingerprint_frames(
    frames: Sequence[np.ndarray],
    settings: Settings,
    executor: Optional[Executor] = None,
) -> VideoFingerprint:
    """
    Huella de una lista de frames ya decodificados.

    Las dos señales (estructural y color) corren en paralelo en el pool de CPU;
    ambas sólo leen `frames`.
    """
    if not frames:
        raise NoUsableFrames("Ningún frame se pudo decodificar")

    loop = asyncio.get_running_loop()
    frames = list(frames)
    structural, color = await asyncio.gather(
        loop.run_in_executor(executor, structural_hash, frames, settings.FRAME_SIZE, settings.GRID_SIZE),
        loop.run_in_executor(executor, color_hash, frames, settings.FRAME_SIZE, settings.GRID_SIZE),
    )
    return VideoFingerprint.from_vector(combine_hashes(structural, color))


async def compute_fingerprint(
    source: VideoSource,
    settings: Optional[Settings] = None,
    executor: Optional[Executor] = None,
) -> VideoFingerprint:
    """
    Video -> huella de 64 bits.

    Raises:
        HashError (SourceUnavailable, ExtractionFailed, NoFramesProduced, NoUsableFrames)
    """
    settings = settings or get_settings()
    started = time.monotonic()
    async with source.open() as path:
        frames: List[np.ndarray] = await sample_frames(path, settings, executor)
    fingerprint = await fingerprint_frames(frames, settings, executor)
    logger.info(
        "Huella calculada para %s: %s (%d frames, %.2fs)",
        source, fingerprint.bits, len(frames), time.monotonic() - started,
    )
    return fingerprint
