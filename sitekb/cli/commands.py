"""SiteKB operator commands.

Usage::

    python -m sitekb.cli ingest --tenant acme --url https://acme.example --max-pages 25
    python -m sitekb.cli query --tenant acme "What are your opening hours?"
    python -m sitekb.cli count --tenant acme
    python -m sitekb.cli history --tenant acme --limit 5
    python -m sitekb.cli purge --tenant acme --yes

Every command exits 0 on success and 1 on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid

from pydantic import ValidationError

from sitekb.config.settings import Settings
from sitekb.main import SiteKB, build_services
from sitekb.models.ingestion import IngestionJob, IngestionPhase
from sitekb.utils.errors import SiteKBError
from sitekb.utils.logging import configure_logging


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_ingest(args: argparse.Namespace, kb: SiteKB) -> int:
    job = IngestionJob(tenant_id=args.tenant, base_url=args.url, max_pages=args.max_pages)
    run_id = uuid.uuid4().hex

    def _print_progress(
        _run_id: str, phase: IngestionPhase, progress: float, message: str
    ) -> None:
        print(f"  [{progress:5.1f}%] {phase.value:<9} {message}")

    print(f"Ingesting {job.base_url} for tenant '{job.tenant_id}'")
    kb.progress_tracker.register_listener(run_id, _print_progress)
    try:
        run = await kb.orchestrator.run(job, run_id=run_id)
    finally:
        kb.progress_tracker.forget(run_id)

    print()
    print(f"Run {run.run_id}: {run.phase.value}")
    print(f"  Pages crawled:   {run.pages_crawled}")
    print(f"  Chunks created:  {run.chunks_created}")
    print(f"  Records written: {run.records_written}")
    if run.error_message:
        print(f"  Error:           {run.error_message}", file=sys.stderr)
    return 0 if run.succeeded else 1


async def _handle_query(args: argparse.Namespace, kb: SiteKB) -> int:
    results = await kb.retriever.find_similar(
        args.tenant,
        args.question,
        top_k=args.top_k,
        min_similarity=args.min_similarity,
    )
    if not results:
        print("No matching passages.")
        return 0

    for rank, result in enumerate(results, start=1):
        print(f"{rank}. [{result.similarity:.3f}] {result.source_url}")
        print(f"   {result.text[:300]}")
    return 0


async def _handle_count(args: argparse.Namespace, kb: SiteKB) -> int:
    count = await kb.index_writer.count(args.tenant)
    print(f"{args.tenant}: {count} records")
    return 0


async def _handle_history(args: argparse.Namespace, kb: SiteKB) -> int:
    runs = await kb.orchestrator.history(args.tenant, limit=args.limit)
    if not runs:
        print(f"No ingestion runs recorded for '{args.tenant}'.")
        return 0

    print(f"{'STARTED':<20} {'STATUS':<9} {'PAGES':>5} {'RECORDS':>7}  URL")
    for run in runs:
        started = run.started_at.strftime("%Y-%m-%d %H:%M:%S")
        print(
            f"{started:<20} {run.phase.value:<9} {run.pages_crawled:>5} "
            f"{run.records_written:>7}  {run.base_url}"
        )
        if run.error_message:
            print(f"{'':<20} {run.error_message}")
    return 0


async def _handle_purge(args: argparse.Namespace, kb: SiteKB) -> int:
    count = await kb.index_writer.count(args.tenant)
    print(f"Tenant '{args.tenant}' has {count} live records.")

    if not args.yes:
        confirm = input("  Delete the tenant's index? [y/N] ").strip().lower()
        if confirm not in ("y", "yes"):
            print("  Aborted.")
            return 1

    deleted = await kb.orchestrator.delete_tenant(args.tenant)
    print(f"  Deleted {deleted} records.")
    return 0


_HANDLERS = {
    "ingest": _handle_ingest,
    "query": _handle_query,
    "count": _handle_count,
    "history": _handle_history,
    "purge": _handle_purge,
}


# ---------------------------------------------------------------------------
# Argument parsing and entry point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the operator CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m sitekb.cli",
        description="Ingest tenant websites and query their knowledge bases.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    ingest_parser = subparsers.add_parser("ingest", help="Crawl a website and rebuild the index")
    ingest_parser.add_argument("--tenant", required=True, help="Tenant identifier")
    ingest_parser.add_argument("--url", required=True, help="Base URL to crawl")
    ingest_parser.add_argument("--max-pages", type=int, default=None, help="Page limit")

    query_parser = subparsers.add_parser("query", help="Similarity search a tenant's index")
    query_parser.add_argument("--tenant", required=True, help="Tenant identifier")
    query_parser.add_argument("question", help="Query text")
    query_parser.add_argument("--top-k", type=int, default=None, help="Maximum results")
    query_parser.add_argument(
        "--min-similarity", type=float, default=None, help="Similarity threshold (0-1)"
    )

    count_parser = subparsers.add_parser("count", help="Count a tenant's live records")
    count_parser.add_argument("--tenant", required=True, help="Tenant identifier")

    history_parser = subparsers.add_parser("history", help="Show recent ingestion runs")
    history_parser.add_argument("--tenant", required=True, help="Tenant identifier")
    history_parser.add_argument("--limit", type=int, default=20, help="Runs to show")

    purge_parser = subparsers.add_parser("purge", help="Delete a tenant's index")
    purge_parser.add_argument("--tenant", required=True, help="Tenant identifier")
    purge_parser.add_argument("--yes", action="store_true", help="Skip confirmation")

    return parser


async def _dispatch(args: argparse.Namespace, app_settings: Settings) -> int:
    kb = build_services(app_settings)
    await kb.initialize()
    try:
        return await _HANDLERS[args.command](args, kb)
    finally:
        await kb.aclose()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse *argv*, run the command, exit with its status."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(log_level=args.log_level or app_settings.log_level)

    try:
        exit_code = asyncio.run(_dispatch(args, app_settings))
    except (SiteKBError, ValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)
