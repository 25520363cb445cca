"""
Errores del subsistema de deduplicación.

Jerarquía:
  DedupError
    ├─ HashError            (fallos de entrada/recursos al calcular la huella)
    │    ├─ SourceUnavailable
    │    ├─ ExtractionFailed
    │    ├─ NoFramesProduced
    │    └─ NoUsableFrames
    ├─ InvalidCodeLength    (hash textual que no son 64 caracteres '0'/'1')
    └─ IndexInconsistency   (invariante interno del índice violado)
"""


class DedupError(Exception):
    """Base de todos los errores de deduplicación."""


class HashError(DedupError):
    """No se pudo calcular la huella de un video."""


class SourceUnavailable(HashError):
    """El video no se pudo descargar o no existe en disco."""


class ExtractionFailed(HashError):
    """ffmpeg/ffprobe terminó con código != 0 o excedió el timeout."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


class NoFramesProduced(HashError):
    """La decodificación terminó bien pero no dejó ningún frame."""


class NoUsableFrames(HashError):
    """Ningún frame muestreado se pudo decodificar a imagen."""


class InvalidCodeLength(DedupError, ValueError):
    """Representación textual de hash inválida."""


class IndexInconsistency(DedupError):
    """Un resultado de búsqueda apunta a un id que ya no está en el índice."""

    def __init__(self, video_id: str):
        super().__init__(f"El resultado de búsqueda referencia un id ausente: {video_id}")
        self.video_id = video_id
