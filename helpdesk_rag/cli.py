"""Command line interface for the helpdesk retrieval engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from .chat.engine import ChatEngine
from .chat.llm import OpenAIEmbedder
from .config import RAGSettings
from .ingestion.loaders import load_document_records, load_text_document
from .models import Document, SearchStrategy
from .retrieval.engine import RAGEngine
from .storage.qdrant_store import QdrantVectorIndex

logger = logging.getLogger(__name__)


def _load_config(path: Path | None) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():  # pragma: no cover - CLI guard
        raise FileNotFoundError(f"Configuration file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def build_engine(settings: RAGSettings, store_dir: str | None) -> RAGEngine:
    external = None
    if settings.use_qdrant:
        external = QdrantVectorIndex(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            collection_name=settings.qdrant_collection,
            vector_size=settings.vector_size,
            timeout=settings.search_timeout,
        )
    embedder = OpenAIEmbedder(model=settings.embedding_model)
    return RAGEngine(settings, embedder, external=external, storage_dir=store_dir)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Helpdesk RAG CLI")
    parser.add_argument(
        "--store-dir",
        default="data/store",
        help="Directory used to persist the in-process vector index (default: data/store)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a JSON configuration file; its 'rag' section overrides the defaults",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser("ingest", help="Ingest documents into the knowledge base")
    ingest_parser.add_argument(
        "--documents",
        type=Path,
        help="JSON file holding a list of document records",
    )
    ingest_parser.add_argument(
        "--text-file",
        type=Path,
        action="append",
        default=[],
        help="Plain text or Markdown file to ingest as a manually added document (repeatable)",
    )
    ingest_parser.add_argument(
        "--reindex",
        action="store_true",
        help="Replace existing chunks of each document instead of adding alongside them",
    )

    strategies = [strategy.value for strategy in SearchStrategy]

    search_parser = subparsers.add_parser("search", help="Run a single search and print the ranked results")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--strategy", default="hybrid", choices=strategies)
    search_parser.add_argument("--top-k", type=int, default=None, help="Number of chunks to retrieve")
    search_parser.add_argument("--source", default=None, help="Restrict results to one source brand")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat session")
    chat_parser.add_argument("--strategy", default="hybrid", choices=strategies)
    chat_parser.add_argument(
        "--top-k",
        type=int,
        default=None,
        help="Number of document chunks to retrieve for each query",
    )

    subparsers.add_parser("sources", help="List the sources in the knowledge base")
    subparsers.add_parser("stats", help="Show knowledge base and cache statistics")

    return parser


async def _ingest(engine: RAGEngine, args: argparse.Namespace) -> None:
    documents: List[Document] = []
    if args.documents:
        documents.extend(load_document_records(args.documents))
    for text_file in args.text_file:
        documents.append(load_text_document(text_file))

    if not documents:
        print("No documents given. Use --documents or --text-file.")
        return

    if args.reindex:
        total = 0
        for document in documents:
            total += await engine.reindex_document(document)
        errors: List[Dict[str, str]] = []
    else:
        total, errors = await engine.add_documents(documents)

    print(f"Ingested {len(documents)} documents ({total} chunks) into the {engine.backends.backend_name} index.")
    for error in errors:
        print(f"- failed: {error['document']}: {error['error']}")


async def _search(engine: RAGEngine, args: argparse.Namespace) -> None:
    results = await engine.search(args.query, args.strategy, top_k=args.top_k, source_filter=args.source)
    report = engine.generate_citations(results, args.query)
    _print_json(
        {
            "results": [result.to_dict() for result in results],
            "sources": engine.generate_source_citations(results),
            "citations": report.to_dict(),
        }
    )


async def _chat(engine: RAGEngine, args: argparse.Namespace) -> None:
    chat = ChatEngine(engine)
    history: List[Dict[str, str]] = []
    print("Enter your questions. Press Ctrl+C or Ctrl+D to exit.\n")
    try:
        while True:
            question = (await asyncio.to_thread(input, "?> ")).strip()
            if not question:
                continue
            response = await chat.ask(question, history=history, strategy=args.strategy, top_k=args.top_k)
            print("\n" + response.answer + "\n")
            if response.references:
                print("References:")
                for result in response.references:
                    citation = result.citation or result.id
                    print(f"- {citation} (score={result.similarity:.3f})")
                print()
            history.append({"role": "user", "content": question})
            history.append({"role": "assistant", "content": response.answer})
    except (KeyboardInterrupt, EOFError):  # pragma: no cover - interactive session
        print("\nGoodbye!")


async def _run(args: argparse.Namespace, settings: RAGSettings) -> None:
    engine = build_engine(settings, args.store_dir)
    try:
        await engine.initialize()
        if args.command == "ingest":
            await _ingest(engine, args)
        elif args.command == "search":
            await _search(engine, args)
        elif args.command == "chat":
            await _chat(engine, args)
        elif args.command == "sources":
            _print_json([source.to_dict() for source in await engine.get_available_sources()])
        elif args.command == "stats":
            _print_json(await engine.get_stats())
    finally:
        await engine.close()


def main(argv: List[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = _load_config(args.config)
    settings = RAGSettings.from_env(config.get("rag", {}))
    asyncio.run(_run(args, settings))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
