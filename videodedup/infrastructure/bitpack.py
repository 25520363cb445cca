from dataclasses import dataclass

import numpy as np

from videodedup.errors import InvalidCodeLength

"""
Codificación de la huella de 64 bits.

- Texto: 64 caracteres '0'/'1', MSB primero (posición k <-> bit 63-k).
- Binario: 8 bytes big-endian (lo que guardamos en Redis/PG).
- Vector: np.ndarray bool (64,) en orden de regiones (fila por fila).
"""

HASH_BITS = 64
_MAX_CODE = (1 << HASH_BITS) - 1


def bits_to_code(bits: np.ndarray) -> int:
    """bits: shape (64,) bool/0-1 -> entero sin signo de 64 bits."""

    flat = np.asarray(bits, dtype=np.uint8).reshape(-1)
    if flat.shape[0] != HASH_BITS:
        raise InvalidCodeLength(f"Se esperaban {HASH_BITS} bits, llegaron {flat.shape[0]}")
    packed = np.packbits(flat, bitorder="big")
    return int.from_bytes(packed.tobytes(), "big")


def code_to_bits(code: int) -> np.ndarray:
    """Entero de 64 bits -> (64,) uint8 0/1."""

    arr = np.frombuffer(code.to_bytes(8, "big"), dtype=np.uint8)
    return np.unpackbits(arr, bitorder="big").astype(np.uint8)


def code_from_text(text: str) -> int:
    """'0101...' (64 chars) -> entero. Rechaza longitudes o caracteres inválidos."""

    if not isinstance(text, str) or len(text) != HASH_BITS:
        size = len(text) if isinstance(text, str) else type(text).__name__
        raise InvalidCodeLength(f"El hash debe tener {HASH_BITS} bits, llegó {size}")
    if text.strip("01"):
        raise InvalidCodeLength(f"Carácter inválido en el hash: {text.strip('01')[0]!r}")
    return int(text, 2)


def code_to_text(code: int) -> str:
    return format(code, "064b")


def pack_code(code: int) -> bytes:
    """Entero -> 8 bytes big-endian."""

    return code.to_bytes(8, "big")


def unpack_code(data: bytes) -> int:
    """8 bytes -> entero."""

    if len(data) != 8:
        raise InvalidCodeLength(f"Se esperaban 8 bytes, llegaron {len(data)}")
    return int.from_bytes(data, "big")


@dataclass(frozen=True)
class VideoFingerprint:
    """
    Huella perceptual inmutable de un video.

    Dos huellas sólo son comparables si se calcularon con los mismos
    parámetros de layout (GRID_SIZE, FRAME_SIZE).
    """

    code: int

    def __post_init__(self):
        if not 0 <= self.code <= _MAX_CODE:
            raise InvalidCodeLength(f"El código no cabe en {HASH_BITS} bits: {self.code}")

    @classmethod
    def from_bits(cls, text: str) -> "VideoFingerprint":
        return cls(code_from_text(text))

    @classmethod
    def from_bytes(cls, data: bytes) -> "VideoFingerprint":
        return cls(unpack_code(data))

    @classmethod
    def from_vector(cls, bits: np.ndarray) -> "VideoFingerprint":
        return cls(bits_to_code(bits))

    @property
    def bits(self) -> str:
        return code_to_text(self.code)

    def to_bytes(self) -> bytes:
        return pack_code(self.code)

    def distance(self, other: "VideoFingerprint") -> int:
        return (self.code ^ other.code).bit_count()

    def similarity(self, other: "VideoFingerprint") -> float:
        return 100.0 * (HASH_BITS - self.distance(other)) / HASH_BITS

    def __str__(self) -> str:
        return self.bits
