from pydantic import BaseModel, Field, AliasChoices, ConfigDict
from typing import List, Optional

class DedupRequest(BaseModel):
    """
    Payload de deduplicación de un video recién subido.

    Campos:
      - video_id: Identificador opaco y único (UUID, id de contenido, etc.).
      - video_url: URL http(s) o ruta local del video.
      - canister_id / publisher_principal / post_id: metadatos del publicador,
        se devuelven tal cual en la respuesta para el paso de publicación.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "video_id": "3f1c2a9e6b7d4c0e8a5f9d2b1c0e7a64",
                "video_url": "https://storage.example.com/videos/3f1c2a9e.mp4",
                "canister_id": "abc12-xyz",
                "publisher_principal": "principal-1",
                "post_id": 42,
            }
        }
    )

    video_id: str = Field(..., min_length=1, description="ID del video")
    video_url: str = Field(
        ...,
        description="URL o ruta del video",
        validation_alias=AliasChoices("video_url", "url", "path"),
    )
    canister_id: Optional[str] = None
    publisher_principal: Optional[str] = None
    post_id: Optional[int] = None


class HashEntry(BaseModel):
    """Par (id, hash de 64 caracteres '0'/'1')."""
    video_id: str
    videohash: str  # largo y alfabeto se validan en el índice


class FindDuplicatesRequest(BaseModel):
    """Lote de hashes a comparar contra el índice."""
    candidates: List[HashEntry]
    threshold: float = Field(85.0, gt=0, le=100, description="Similitud mínima (%)")


class BackfillItem(BaseModel):
    video_id: str = Field(..., min_length=1)
    video_url: str = Field(..., validation_alias=AliasChoices("video_url", "url", "path"))


class BackfillRequest(BaseModel):
    """Videos históricos a deduplicar (se procesan con paralelismo acotado)."""
    items: List[BackfillItem] = Field(..., min_length=1)
