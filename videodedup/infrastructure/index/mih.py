from collections import defaultdict
from functools import lru_cache
from itertools import combinations
from math import comb
from typing import Dict, List, Optional, Sequence, Tuple

"""
Multi-Index Hashing (MIH) sobre códigos de 64 bits.

Cada código se parte en `blocks` sub-bloques de 64/blocks bits y cada sub-bloque
se indexa por valor en su propia tabla. Por el principio del palomar, si
d(a, b) <= r entonces algún sub-bloque difiere en <= r // blocks bits: basta
sondear, en cada tabla, los valores a esa distancia del sub-bloque consultado.

Cuando el sondeo costaría más que recorrer todo, se hace un scan lineal.
"""

CODE_BITS = 64


@lru_cache(maxsize=None)
def flip_masks(bits: int, radius: int) -> Tuple[int, ...]:
    """Todas las máscaras de `bits` bits con exactamente `radius` unos."""
    return tuple(sum(1 << i for i in idx) for idx in combinations(range(bits), radius))


class MultiIndexHash:
    """Estructura de búsqueda inmutable; las posiciones devueltas indexan `codes`."""

    def __init__(self, codes: Sequence[int], blocks: int = 4):
        if blocks <= 0 or CODE_BITS % blocks:
            raise ValueError(f"blocks debe dividir {CODE_BITS}, llegó {blocks}")
        self.blocks = blocks
        self.block_bits = CODE_BITS // blocks
        self._mask = (1 << self.block_bits) - 1
        self.codes: Tuple[int, ...] = tuple(codes)
        self.tables: List[Dict[int, List[int]]] = [defaultdict(list) for _ in range(blocks)]
        for pos, code in enumerate(self.codes):
            for j in range(blocks):
                self.tables[j][self._block(code, j)].append(pos)

    def __len__(self) -> int:
        return len(self.codes)

    def _block(self, code: int, j: int) -> int:
        return (code >> (j * self.block_bits)) & self._mask

    def _probe_cost(self, radius: int) -> int:
        """Cantidad de lookups para sondear un radio exacto en todas las tablas."""
        return self.blocks * comb(self.block_bits, radius)

    def _probe(self, query: int, radius: int, seen: set) -> List[int]:
        """Posiciones nuevas cuyo algún sub-bloque está a distancia exacta `radius`."""
        found = []
        for j, table in enumerate(self.tables):
            qb = self._block(query, j)
            for mask in flip_masks(self.block_bits, radius):
                for pos in table.get(qb ^ mask, ()):
                    if pos not in seen:
                        seen.add(pos)
                        found.append(pos)
        return found

    def _linear(self, query: int, max_distance: int) -> List[Tuple[int, int]]:
        out = []
        for pos, code in enumerate(self.codes):
            d = (query ^ code).bit_count()
            if d <= max_distance:
                out.append((pos, d))
        return out

    def range_search(self, query: int, max_distance: int) -> List[Tuple[int, int]]:
        """Todas las (posición, distancia) con distancia <= max_distance (sin orden)."""
        if not self.codes or max_distance < 0:
            return []
        sub_radius = max_distance // self.blocks
        cost = sum(self._probe_cost(k) for k in range(sub_radius + 1))
        if cost >= len(self.codes):
            return self._linear(query, max_distance)

        seen: set = set()
        out = []
        for k in range(sub_radius + 1):
            for pos in self._probe(query, k, seen):
                d = (query ^ self.codes[pos]).bit_count()
                if d <= max_distance:
                    out.append((pos, d))
        return out

    def nearest(self, query: int) -> Optional[Tuple[int, int]]:
        """
        Vecino más cercano (posición, distancia). Empates: el primero encontrado.

        Tras sondear el radio s en todas las tablas, cualquier código no visto
        está a distancia >= blocks * (s + 1); si el mejor ya está por debajo, es exacto.
        """
        if not self.codes:
            return None
        seen: set = set()
        best: Optional[Tuple[int, int]] = None
        spent = 0
        for radius in range(self.block_bits + 1):
            spent += self._probe_cost(radius)
            if spent >= len(self.codes):
                break
            for pos in self._probe(query, radius, seen):
                d = (query ^ self.codes[pos]).bit_count()
                if best is None or d < best[1]:
                    best = (pos, d)
            if best is not None and best[1] < self.blocks * (radius + 1):
                return best

        for pos, code in enumerate(self.codes):
            d = (query ^ code).bit_count()
            if best is None or d < best[1]:
                best = (pos, d)
        return best
