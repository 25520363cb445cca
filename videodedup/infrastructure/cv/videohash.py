import math
from typing import Sequence

import cv2
import numpy as np

from videodedup.errors import NoUsableFrames

"""
Huella global de un video (64 bits) combinando dos señales sobre los frames muestreados:

- Estructural (luminancia): collage cuadrado de todos los frames -> gris -> 8x8,
  bit = pixel >= mediana.
- Layout de color: tira horizontal con todos los frames a alto fijo -> grilla 8x8,
  bit = brillo medio (R+G+B)/3 > 128.

La huella final es el XOR bit a bit de ambas. Los frames entran en BGR uint8
(convención de OpenCV). Todas las funciones son puras: se pueden correr en
hilos distintos sobre la misma lista de frames.
"""

BRIGHTNESS_MIDPOINT = 128
# Regiones con más píxeles que esto se submuestrean (1 de cada 4 en cada eje)
REGION_SUBSAMPLE_PIXELS = 10_000
REGION_SUBSAMPLE_STEP = 4


def _check_frames(frames: Sequence[np.ndarray]) -> None:
    if not frames:
        raise NoUsableFrames("No hay frames decodificados para calcular la huella")


def _resize(image: np.ndarray, width: int, height: int) -> np.ndarray:
    return cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)


def _median_bits(gray: np.ndarray) -> np.ndarray:
    """bit = pixel >= mediana (mediana "alta": elemento n/2 del arreglo ordenado)."""

    flat = gray.reshape(-1)
    median = np.sort(flat)[flat.shape[0] // 2]
    return flat >= median


def structural_hash(frames: Sequence[np.ndarray], frame_size: int = 144, grid_size: int = 8) -> np.ndarray:
    """
    Señal estructural de luminancia (bool[grid_size**2]).

    Un solo frame se reduce directo a grid x grid; con varios se arma un collage
    de lado ceil(sqrt(N)) con cada frame a frame_size x frame_size (celdas
    sobrantes quedan en negro).
    """
    _check_frames(frames)

    if len(frames) == 1:
        small = _resize(frames[0], grid_size, grid_size)
        gray = cv2.cvtColor(small, cv2.COLOR_BGR2GRAY)
        return _median_bits(gray)

    side = math.ceil(math.sqrt(len(frames)))
    collage = np.zeros((side * frame_size, side * frame_size, 3), dtype=np.uint8)
    for i, frame in enumerate(frames):
        x = (i % side) * frame_size
        y = (i // side) * frame_size
        collage[y:y + frame_size, x:x + frame_size] = _resize(frame, frame_size, frame_size)

    gray = cv2.cvtColor(collage, cv2.COLOR_BGR2GRAY)
    small = _resize(gray, grid_size, grid_size)
    return _median_bits(small)


def _brightness_bits(rgb_means: np.ndarray) -> np.ndarray:
    """rgb_means: (..., 3) enteros 0-255 -> bool por brillo (R+G+B)//3 > 128."""

    brightness = rgb_means.astype(np.uint32).sum(axis=-1) // 3
    return (brightness > BRIGHTNESS_MIDPOINT).reshape(-1)


def _stitch(frames: Sequence[np.ndarray], frame_size: int) -> np.ndarray:
    """Une los frames en horizontal, cada uno reescalado a alto `frame_size` con su propio aspecto."""

    parts = []
    for frame in frames:
        h, w = frame.shape[:2]
        new_w = max(1, int(round(frame_size * w / float(h))))
        parts.append(_resize(frame, new_w, frame_size))
    return np.hstack(parts)


def color_hash(frames: Sequence[np.ndarray], frame_size: int = 144, grid_size: int = 8) -> np.ndarray:
    """
    Señal de layout de color (bool[grid_size**2]).

    Con varios frames: tira horizontal partida en grid x grid regiones; por región
    se promedia RGB (submuestreando regiones grandes) y se umbraliza el brillo.
    Con un frame: se reduce a grid x grid y se umbraliza cada pixel.
    """
    _check_frames(frames)

    if len(frames) == 1:
        small = _resize(frames[0], grid_size, grid_size)
        rgb = cv2.cvtColor(small, cv2.COLOR_BGR2RGB)
        return _brightness_bits(rgb)

    strip = cv2.cvtColor(_stitch(frames, frame_size), cv2.COLOR_BGR2RGB)
    height, width = strip.shape[:2]
    chunk_w = width // grid_size
    chunk_h = height // grid_size

    bits = np.zeros(grid_size * grid_size, dtype=bool)
    if chunk_w == 0 or chunk_h == 0:
        return bits

    step = REGION_SUBSAMPLE_STEP if chunk_w * chunk_h > REGION_SUBSAMPLE_PIXELS else 1
    means = np.zeros((grid_size, grid_size, 3), dtype=np.uint32)
    for gy in range(grid_size):
        for gx in range(grid_size):
            region = strip[gy * chunk_h:(gy + 1) * chunk_h:step, gx * chunk_w:(gx + 1) * chunk_w:step]
            pixels = region.reshape(-1, 3).astype(np.uint64)
            means[gy, gx] = pixels.sum(axis=0) // pixels.shape[0]
    return _brightness_bits(means)


def combine_hashes(structural: np.ndarray, color: np.ndarray) -> np.ndarray:
    """XOR bit a bit de ambas señales."""

    return np.logical_xor(structural, color)


def frames_fingerprint_bits(frames: Sequence[np.ndarray], frame_size: int = 144, grid_size: int = 8) -> np.ndarray:
    """Versión secuencial (sin pool) de la huella completa; útil en scripts y tests."""

    return combine_hashes(
        structural_hash(frames, frame_size, grid_size),
        color_hash(frames, frame_size, grid_size),
    )
