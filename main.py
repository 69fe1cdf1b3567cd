"""Command-line entry point for seeding and inspecting the SalesRAG engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import sqlite3
import sys
from typing import TYPE_CHECKING

from salesrag.cache import TTLCache
from salesrag.config import config
from salesrag.context_builder import ContextBuilder
from salesrag.conversation import build_enhanced_system_prompt
from salesrag.embeddings import EmbeddingService
from salesrag.errors import SalesRAGError
from salesrag.models import COLLECTIONS, ConversationHistory
from salesrag.seeding import seed_examples
from salesrag.vector_store import get_vector_store

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger

    from salesrag.vector_store import FaissVectorStore, SQLiteVectorStore


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Seed and inspect the SalesRAG conversation store.",
    )
    parser.add_argument(
        "--backend",
        choices=("faiss", "sqlite"),
        default=config.VECTOR_BACKEND,
        help="Vector store backend (default: VECTOR_BACKEND or faiss).",
    )
    parser.add_argument(
        "--industry",
        default=config.DEFAULT_INDUSTRY,
        help="Industry scope for retrieval and seeding (default: %(default)s).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("seed", help="Embed and insert the curated examples.")

    context_parser = subparsers.add_parser(
        "context",
        help="Print the RAG context for a user message as JSON.",
    )
    context_parser.add_argument("message", help="User message to build context for.")
    context_parser.add_argument(
        "--stage",
        default="discovery",
        help="Current conversation stage (default: discovery).",
    )
    context_parser.add_argument(
        "--prompt",
        action="store_true",
        help="Print the enhanced system prompt instead of JSON.",
    )

    success_parser = subparsers.add_parser(
        "mark-success",
        help="Mark every stored turn of a session as a completed booking.",
    )
    success_parser.add_argument("session_id", help="Session identifier.")
    success_parser.add_argument(
        "--score",
        type=float,
        default=1.0,
        help="Conversion score to record (default: 1.0).",
    )

    subparsers.add_parser("stats", help="Show record counts per collection.")
    subparsers.add_parser(
        "verify",
        help="Check that provider and store agree on the embedding dimension.",
    )
    return parser.parse_args(argv)


def open_store(backend: str, logger: Logger) -> FaissVectorStore | SQLiteVectorStore:
    """Create the configured vector store and load persisted vectors."""  # noqa: DOC201
    store = get_vector_store(backend)  # type: ignore[arg-type]
    store.load()
    logger.info(
        "Opened %s vector store at %s", store.backend, config.VECTOR_STORE_DB_PATH
    )
    return store


def show_stats(store: FaissVectorStore | SQLiteVectorStore, industry: str) -> int:
    """Print collection sizes."""  # noqa: DOC201
    for collection in COLLECTIONS:
        total = store.count(collection)
        scoped = store.count(collection, industry)
        print(f"{collection}: {total} records ({scoped} for {industry})")  # noqa: T201
    return 0


async def run_command(
    args: argparse.Namespace,
    store: FaissVectorStore | SQLiteVectorStore,
    logger: Logger,
) -> int:
    """Dispatch a subcommand that needs the embedding provider."""  # noqa: DOC201
    embedding_service = EmbeddingService()
    builder = ContextBuilder(embedding_service, store, cache=TTLCache())

    if args.command == "seed":
        summary = await seed_examples(embedding_service, store, industry=args.industry)
        print(  # noqa: T201
            f"Seeded {summary.success} of {summary.total} examples "
            f"({summary.errors} errors)"
        )
        return 0 if summary.errors == 0 else 1

    if args.command == "context":
        history = ConversationHistory(stage=args.stage, message_count=1)
        context = await builder.build_rag_context(args.message, args.industry, history)
        if args.prompt:
            print(build_enhanced_system_prompt("", context))  # noqa: T201
        else:
            print(json.dumps(context.to_dict(), indent=2))  # noqa: T201
        return 0

    if args.command == "mark-success":
        updated = await builder.mark_conversation_success(args.session_id, args.score)
        print(f"Updated {updated} turns of session {args.session_id}")  # noqa: T201
        return 0 if updated else 1

    if args.command == "verify":
        dimension = await builder.verify_configuration()
        print(f"Embedding dimension {dimension} verified")  # noqa: T201
        return 0

    logger.error("Unknown command: %s", args.command)
    return 2


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run the requested command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        store = open_store(args.backend, logger)
    except (sqlite3.Error, OSError, RuntimeError):
        logger.exception("Unable to open vector store")
        return 1

    if args.command == "stats":
        return show_stats(store, args.industry)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    try:
        return asyncio.run(run_command(args, store, logger))
    except KeyboardInterrupt:
        logger.info("SalesRAG stopped by user")
        return 0
    except (SalesRAGError, ValueError):
        logger.exception("Command %s failed", args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
