"""
Pytest configuration for the helpdesk_rag test suite.

Configures:
- pytest-asyncio for async test support
- a deterministic hashing embedder so no test talks to OpenAI
"""
from __future__ import annotations

import hashlib
from typing import Sequence

import numpy as np
import pytest

from helpdesk_rag.config import RAGSettings
from helpdesk_rag.errors import EmbeddingError
from helpdesk_rag.models import ChunkMetadata, Document, DocumentChunk, SearchResult
from helpdesk_rag.utils.text import extract_words

pytest_plugins = ["pytest_asyncio"]

EMBEDDING_DIM = 512


class HashingEmbedder:
    """Bag-of-words embedder: every word bumps one hashed dimension."""

    model_name = "hashing-test"

    def __init__(self, dim: int = EMBEDDING_DIM) -> None:
        self.dim = dim
        self.calls = 0
        self.fail = False

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        self.calls += 1
        if self.fail:
            raise EmbeddingError("embedding service unavailable")
        vectors = np.zeros((len(texts), self.dim), dtype=np.float32)
        for row, text in enumerate(texts):
            for word in extract_words(text):
                digest = hashlib.md5(word.encode("utf-8")).digest()
                vectors[row, int.from_bytes(digest[:4], "little") % self.dim] += 1.0
        return vectors


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def settings() -> RAGSettings:
    return RAGSettings()


@pytest.fixture
def make_chunk():
    def _make(
        chunk_id: str,
        text: str,
        *,
        url: str = "https://docs.atlan.com/guide",
        title: str = "Guide",
        vector=None,
        chunk_index: int = 0,
        total_chunks: int = 1,
        created_at: str | None = None,
        is_manually_added: bool = False,
        description: str = "",
    ) -> DocumentChunk:
        return DocumentChunk(
            id=chunk_id,
            text=text,
            metadata=ChunkMetadata(
                source_url=url,
                source_title=title,
                description=description,
                chunk_index=chunk_index,
                total_chunks=total_chunks,
                created_at=created_at,
                word_count=len(text.split()),
                is_manually_added=is_manually_added,
            ),
            vector=None if vector is None else np.asarray(vector, dtype=np.float32),
        )

    return _make


@pytest.fixture
def make_result(make_chunk):
    def _make(chunk_id: str, text: str, similarity: float, **kwargs) -> SearchResult:
        return SearchResult(chunk=make_chunk(chunk_id, text, **kwargs), similarity=similarity)

    return _make


@pytest.fixture
def documents() -> list[Document]:
    return [
        Document(
            url="https://docs.atlan.com/getting-started/what-is-atlan",
            title="What is Atlan",
            description="Overview of the Atlan data catalog",
            content=(
                "Atlan is a modern data catalog for data teams. "
                "It helps analysts discover trusted tables and dashboards. "
                "Atlan connects to warehouses such as Snowflake and Databricks. "
                "Governance policies in Atlan control who can see sensitive columns."
            ),
            timestamp="2024-01-10T00:00:00Z",
        ),
        Document(
            url="https://docs.snowflake.com/en/user-guide/warehouses",
            title="Virtual warehouses",
            description="Snowflake compute",
            content=(
                "A virtual warehouse is a cluster of compute resources in Snowflake. "
                "Warehouses run queries and load data into tables. "
                "You can resize a warehouse at any time to change its credit usage."
            ),
        ),
        Document(
            url="https://docs.databricks.com/troubleshooting/connection-errors",
            title="Troubleshooting connection errors",
            content=(
                "If you see an error connecting to database clusters, check the network settings first. "
                "Expired tokens are the most common cause of authentication problems. "
                "Restart the cluster after rotating credentials to fix the issue."
            ),
        ),
    ]
