"""Load documents for ingestion from JSON exports or text files."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..models import Document

logger = logging.getLogger(__name__)


class DocumentRecord(BaseModel):
    """One entry of a scraped-document export."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = Field(min_length=1)
    title: str = ""
    content: str = Field(default="", validation_alias=AliasChoices("content", "text"))
    description: str = ""
    timestamp: Optional[str] = None
    is_manually_added: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_manually_added", "isManuallyAdded"),
    )

    def to_document(self) -> Document:
        return Document(
            url=self.url,
            title=self.title or self.url,
            content=self.content,
            description=self.description,
            timestamp=self.timestamp,
            is_manually_added=self.is_manually_added,
        )


def load_document_records(path: str | Path) -> List[Document]:
    """Load a JSON list of document records.

    Records that fail validation or have no content are skipped with a
    warning rather than aborting the whole file.
    """

    file_path = Path(path)
    if not file_path.exists():  # pragma: no cover - file system guard
        raise FileNotFoundError(f"Document export not found: {file_path}")

    raw = json.loads(file_path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("documents", [])

    documents: List[Document] = []
    for position, item in enumerate(raw):
        try:
            record = DocumentRecord.model_validate(item)
        except ValidationError as exc:
            logger.warning("Skipping invalid document record %d in %s: %s", position, file_path, exc)
            continue
        if not record.content.strip():
            logger.warning("Skipping empty document %s", record.url)
            continue
        documents.append(record.to_document())
    return documents


def load_text_document(path: str | Path, *, title: str | None = None) -> Document:
    """Load a plain text or Markdown file as a single manually added document.

    The document URL is the file's ``file://`` URI so citations label it as an
    uploaded file.
    """

    file_path = Path(path)
    if not file_path.exists():  # pragma: no cover - file system guard
        raise FileNotFoundError(f"Text document not found: {file_path}")

    return Document(
        url=file_path.resolve().as_uri(),
        title=title or file_path.stem,
        content=file_path.read_text(encoding="utf-8"),
        description=f"Uploaded file {file_path.name}",
        timestamp=datetime.now(timezone.utc).isoformat(),
        is_manually_added=True,
    )
