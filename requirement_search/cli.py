"""Command-line utilities for the requirement search engine."""

from __future__ import annotations

import argparse
import logging
from typing import Any

from requirement_search.config import SearchConfig
from requirement_search.engine import RequirementSearchEngine
from requirement_search.exceptions import RequirementSearchError
from requirement_search.ingestion import load_proposal, validate_requirements

logger = logging.getLogger(__name__)

SEARCH_MODES = ("hybrid", "vector", "keyword")


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:  # pragma: no cover - user input validation
        raise argparse.ArgumentTypeError("Expected an integer") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Expected a positive integer")
    return parsed


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Utilities for the Requirement Search Engine")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Rebuild both indexes from a requirement export")
    ingest.add_argument("path", help="Path to the requirements JSON export")

    search = subparsers.add_parser("search", help="Search the indexed requirements")
    search.add_argument("query", help="Natural-language query")
    search.add_argument("--mode", choices=SEARCH_MODES, default="hybrid")
    search.add_argument("--top-k", type=_positive_int, default=10, dest="top_k")

    subparsers.add_parser("stats", help="Show index document counts")

    return parser


def _run_ingest(engine: RequirementSearchEngine, args: argparse.Namespace) -> int:
    proposal = load_proposal(args.path)
    if validate_requirements(proposal):
        logger.warning("Validation warnings found, but continuing...")

    report = engine.ingest_requirements(proposal.requirements)
    print(
        f"Ingested {report.document_count} requirements "
        f"(dimension {report.dimension}, vocabulary {report.vocabulary_size})"
    )
    return 0


def _run_search(engine: RequirementSearchEngine, args: argparse.Namespace) -> int:
    if args.mode == "keyword":
        results = engine.search_keyword_only(args.query, top_k=args.top_k)
    elif args.mode == "vector":
        embedding = engine.embedder.embed(args.query)
        results = engine.search_vector_only(embedding, top_k=args.top_k)
    else:
        results = engine.search_hybrid(args.query, top_k=args.top_k)

    if not results:
        print("No matching requirements.")
        return 0

    for rank, result in enumerate(results, start=1):
        text = result.metadata.get("normalized_text") or result.metadata.get("searchable_text", "")
        print(f"{rank}. {result.doc_id}\t{result.fused_score:.4f}\t{text}")
    return 0


def _run_stats(engine: RequirementSearchEngine, args: argparse.Namespace) -> int:
    print(f"vector documents: {engine.vector_index.count()}")
    print(f"keyword documents: {engine.bm25_index.count()}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands: dict[str, Any] = {
        "ingest": _run_ingest,
        "search": _run_search,
        "stats": _run_stats,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.error("Unknown command")
        return 1

    try:
        engine = RequirementSearchEngine(SearchConfig())
        return handler(engine, args)
    except RequirementSearchError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
