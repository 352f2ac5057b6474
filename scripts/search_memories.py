#!/usr/bin/env python3
"""Run a hybrid search against the local memory database from the shell.

Uses the same settings as the service (``MCP_*`` environment variables), so
the results match what the engine returns in process.

Usage:
    python scripts/search_memories.py "redis connection pool" [--mode hybrid] [--limit 10]
    python scripts/search_memories.py "jwt refresh" --content-weight 0.5 --tag-weight 0.5 --json
    python scripts/search_memories.py --analytics [--days 7]
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from memory_insight_service.config import settings  # noqa: E402
from memory_insight_service.logging_config import configure_logging  # noqa: E402
from memory_insight_service.models.search import SearchOptions  # noqa: E402
from memory_insight_service.shared_services import ServiceManager  # noqa: E402

logger = logging.getLogger(__name__)


async def run_search(args: argparse.Namespace) -> list[dict]:
    manager = ServiceManager.get_instance()
    try:
        engine = await manager.get_search_engine()
        options = {"search_mode": args.mode, "enable_diversity": args.diversify}
        for name in ("limit", "threshold", "content_weight", "tag_weight", "project_id", "memory_type"):
            value = getattr(args, name)
            if value is not None:
                options[name] = value
        results = await engine.search(args.query, SearchOptions(**options))
        return [result.to_dict() for result in results]
    finally:
        await manager.close()


async def run_analytics(args: argparse.Namespace) -> list[dict]:
    manager = ServiceManager.get_instance()
    try:
        engine = await manager.get_search_engine()
        return await engine.get_search_analytics(days=args.days)
    finally:
        await manager.close()


def print_results(results: list[dict]) -> None:
    if not results:
        print("No results.")
        return
    for rank, result in enumerate(results, start=1):
        scores = result["search_scores"]
        content = scores["content"] if scores["content"] is not None else "-"
        tags = scores["tags"] if scores["tags"] is not None else "-"
        boosted = " +boost" if result["overlap_boosted"] else ""
        print(f"{rank:>2}. [{result['similarity']:.3f}{boosted}] #{result['id']} ({result['memory_type']})")
        print(f"    content={content} tags={tags} mode={result['search_mode']}")
        print(f"    {result['content'][:100]}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Hybrid memory search")
    parser.add_argument("query", nargs="?", help="Search query")
    parser.add_argument(
        "--mode",
        choices=["hybrid", "content_only", "tags_only"],
        default="hybrid",
        help="Search mode (default: hybrid)",
    )
    parser.add_argument("--limit", type=int, default=None, help="Maximum results (default: configured limit)")
    parser.add_argument("--threshold", type=float, default=None, help="Minimum similarity (default: configured)")
    parser.add_argument("--content-weight", type=float, default=None, help="Content weight for hybrid mode")
    parser.add_argument("--tag-weight", type=float, default=None, help="Tag weight for hybrid mode")
    parser.add_argument("--project-id", type=int, default=None, help="Restrict to one project")
    parser.add_argument("--memory-type", type=str, default=None, help="Restrict to one memory type")
    parser.add_argument("--diversify", action="store_true", help="Cap results per memory type and project")
    parser.add_argument("--analytics", action="store_true", help="Show search analytics instead of searching")
    parser.add_argument("--days", type=int, default=7, help="Analytics window in days (default: 7)")
    parser.add_argument("--json", action="store_true", help="Print raw JSON")
    args = parser.parse_args()

    configure_logging(settings.log_level)

    if args.analytics:
        rows = asyncio.run(run_analytics(args))
        print(json.dumps(rows, indent=2))
        return

    if not args.query:
        parser.error("query is required unless --analytics is given")

    try:
        results = asyncio.run(run_search(args))
    except ValueError as e:
        parser.error(str(e))

    if args.json:
        print(json.dumps(results, indent=2, default=str))
    else:
        print_results(results)


if __name__ == "__main__":
    main()
