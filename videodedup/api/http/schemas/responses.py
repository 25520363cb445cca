from pydantic import BaseModel
from typing import Any, Dict, List, Optional, Literal

class DedupResponse(BaseModel):
    """
    Respuesta de /api/dedup:
    - kind: "unique" | "near_duplicate" | "exact_duplicate".
    - matched_id: video contra el que se detectó el duplicado (si aplica).
    - similarity / distance: similitud (%) y distancia Hamming del mejor match.
    - videohash: huella de 64 bits en texto (MSB primero).
    - publisher: metadatos recibidos, para que el caller siga con la publicación.
    """
    video_id: str
    kind: Literal["unique", "near_duplicate", "exact_duplicate"]
    duplicated: bool
    matched_id: Optional[str] = None
    similarity: Optional[float] = None
    distance: Optional[int] = None
    videohash: str
    publisher: Dict[str, Any] = {}

    model_config = {
        "json_schema_extra": {
            "examples": [{
                "video_id": "3f1c2a9e6b7d4c0e8a5f9d2b1c0e7a64",
                "kind": "near_duplicate",
                "duplicated": True,
                "matched_id": "9b8a7c6d5e4f",
                "similarity": 92.19,
                "distance": 5,
                "videohash": "0110" * 16,
                "publisher": {"canister_id": "abc12-xyz", "publisher_principal": "principal-1", "post_id": 42},
            }]
        }
    }

class Neighbor(BaseModel):
    video_id: str
    distance: int
    similarity: float

class NearestResponse(BaseModel):
    match: Optional[Neighbor] = None

class WithinResponse(BaseModel):
    count: int
    items: List[Neighbor]

class DuplicateMatch(BaseModel):
    video_id: str
    similarity: float

class FindDuplicatesResponse(BaseModel):
    max_distance: int
    results: Dict[str, List[DuplicateMatch]]

class ForgetResponse(BaseModel):
    video_id: str
    promoted_id: Optional[str] = None

class PreloadResponse(BaseModel):
    message: str
    hashes_loaded: int

class BackfillFailure(BaseModel):
    video_id: str
    error: str

class BackfillResponse(BaseModel):
    processed: int
    unique: int
    duplicates: int
    failed: int
    failures: List[BackfillFailure] = []
