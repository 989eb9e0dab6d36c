"""Normalization of backend payloads into ``ChunkMetadata``."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..models import ChunkMetadata


class ChunkPayload(BaseModel):
    """Payload stored alongside each vector in the external index.

    Older points carry ``url``/``title``/``timestamp`` while newer ones use
    ``source_url``/``source_title``/``created_at``; both spellings parse into
    the same fields.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    text: str = ""
    source_url: str = Field(default="", validation_alias=AliasChoices("source_url", "url"))
    source_title: str = Field(default="", validation_alias=AliasChoices("source_title", "title"))
    description: str = ""
    chunk_index: int = Field(default=0, ge=0, validation_alias=AliasChoices("chunk_index", "chunkIndex"))
    total_chunks: int = Field(
        default=1,
        ge=1,
        validate_default=True,
        validation_alias=AliasChoices("total_chunks", "totalChunks"),
    )
    created_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("created_at", "timestamp"))
    word_count: int = Field(default=0, ge=0, validation_alias=AliasChoices("word_count", "wordCount"))
    is_manually_added: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_manually_added", "isManuallyAdded"),
    )

    @field_validator("text", "source_url", "source_title", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("total_chunks")
    @classmethod
    def _cover_index(cls, value: int, info) -> int:
        index = info.data.get("chunk_index", 0)
        return max(value, index + 1)

    def to_metadata(self) -> ChunkMetadata:
        return ChunkMetadata(
            source_url=self.source_url,
            source_title=self.source_title,
            description=self.description,
            chunk_index=self.chunk_index,
            total_chunks=self.total_chunks,
            created_at=self.created_at,
            word_count=self.word_count,
            is_manually_added=self.is_manually_added,
        )

    @classmethod
    def from_chunk(cls, text: str, metadata: ChunkMetadata) -> "ChunkPayload":
        return cls(text=text, **metadata.to_dict())

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
