import math
from typing import Literal

from videodedup.infrastructure.bitpack import HASH_BITS

VerdictKind = Literal["unique", "near_duplicate", "exact_duplicate"]


def hamming_distance(a: int, b: int) -> int:
    """Bits distintos entre dos códigos de 64 bits."""
    return (a ^ b).bit_count()


def similarity_percent(distance: int) -> float:
    """Similitud en % = 100 * (64 - d) / 64."""
    return 100.0 * (HASH_BITS - distance) / HASH_BITS


def max_distance_for_threshold(threshold: float) -> int:
    """
    Convierte un umbral de similitud (%) a distancia Hamming máxima.
    Redondea "half away from zero" (90% -> 6.4 -> 6; 85% -> 9.6 -> 10).
    """
    raw = (1.0 - threshold / 100.0) * HASH_BITS
    return max(0, min(HASH_BITS, int(math.floor(raw + 0.5))))


def classify(similarity: float, dup_threshold: float, exact_threshold: float) -> VerdictKind:
    """unique < dup_threshold <= near_duplicate < exact_threshold <= exact_duplicate."""
    if similarity >= exact_threshold:
        return "exact_duplicate"
    if similarity >= dup_threshold:
        return "near_duplicate"
    return "unique"
