"""Chat orchestration for the AI Helpdesk."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence

from ..errors import EmbeddingError
from ..models import CitationReport, SearchResult, SearchStrategy
from ..retrieval.engine import RAGEngine
from .llm import OpenAIChatModel

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI helpdesk assistant. Answer questions using only the provided "
    "context. Cite the titles or URLs of the relevant documents in parentheses. "
    "If the answer is not present in the context, say you do not know."
)

INSUFFICIENT_INFORMATION = (
    "I don't have enough information in the knowledge base to answer that question. "
    "Try rephrasing it or ingest documents that cover the topic."
)

HISTORY_TURNS = 6


@dataclass
class ChatResponse:
    answer: str
    references: List[SearchResult]
    citations: CitationReport = field(default_factory=CitationReport)


class ChatEngine:
    """Glue together retrieval and generation steps."""

    def __init__(
        self,
        rag: RAGEngine,
        *,
        chat_model: OpenAIChatModel | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        log: logging.Logger | None = None,
    ) -> None:
        self.rag = rag
        self.chat_model = chat_model or OpenAIChatModel(model=rag.settings.chat_model)
        self.system_prompt = system_prompt
        self._log = log or logger

    async def ask(
        self,
        question: str,
        *,
        history: Sequence[Mapping[str, str]] | None = None,
        strategy: SearchStrategy | str = SearchStrategy.HYBRID,
        top_k: Optional[int] = None,
        source_filter: Optional[str] = None,
    ) -> ChatResponse:
        try:
            references = await self.rag.search(
                question, strategy, history=history, top_k=top_k, source_filter=source_filter
            )
        except EmbeddingError as exc:
            self._log.error("Retrieval failed for question %r: %s", question, exc)
            return ChatResponse(answer=INSUFFICIENT_INFORMATION, references=[])

        context = self.rag.build_context(references)
        if not context:
            return ChatResponse(answer=INSUFFICIENT_INFORMATION, references=[])

        messages = [{"role": "system", "content": self.system_prompt}]
        for turn in list(history or [])[-HISTORY_TURNS:]:
            messages.append({"role": turn.get("role", "user"), "content": turn.get("content", "")})
        messages.append(
            {
                "role": "user",
                "content": "Context:\n" + context + "\n\n" + f"Question: {question}\n",
            }
        )
        answer = await self.chat_model.generate(messages)
        citations = self.rag.generate_citations(references, question, history)
        return ChatResponse(answer=answer, references=list(references), citations=citations)
