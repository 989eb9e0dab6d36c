"""Wrappers around the OpenAI API for embedding and chat models."""

from __future__ import annotations

import logging
import os
from typing import List, Sequence

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from ..errors import EmbeddingError
from ..storage.vector_store import EmbeddingBackend

logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 20


class OpenAIEmbedder(EmbeddingBackend):
    """Thin wrapper around OpenAI's embedding endpoint.

    Texts are sent in batches of ``batch_size``; any API failure surfaces as
    :class:`EmbeddingError`.
    """

    def __init__(
        self,
        *,
        model: str = "text-embedding-ada-002",
        batch_size: int = EMBEDDING_BATCH_SIZE,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.client = client or AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        self.model_name = model
        self.batch_size = batch_size

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        texts = list(texts)
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            try:
                response = await self.client.embeddings.create(model=self.model_name, input=batch)
            except OpenAIError as exc:
                raise EmbeddingError(f"Failed to create embeddings: {exc}") from exc
            vectors.extend(item.embedding for item in response.data)
            logger.debug("Embedded batch of %d texts with %s", len(batch), self.model_name)
        return np.asarray(vectors, dtype=np.float32)


class OpenAIChatModel:
    """Wrapper around OpenAI's Chat Completions API."""

    def __init__(self, *, model: str = "gpt-4o-mini", client: AsyncOpenAI | None = None) -> None:
        self.client = client or AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"))
        self.model = model

    async def generate(self, messages: Sequence[dict]) -> str:
        response = await self.client.chat.completions.create(model=self.model, messages=list(messages))
        choice = response.choices[0]
        return choice.message.content or ""
