"""CLI entrypoint: python -m letterintel <command>."""

from __future__ import annotations

import argparse
import asyncio
import inspect
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path

from letterintel.config import get_db_path, get_embedding_config, load_config
from letterintel.db import (
    get_connection,
    get_corpus_stats,
    get_recent_runs,
    init_db,
    update_publisher_attributes,
)
from letterintel.errors import LetterIntelError


def setup_logging(config: dict, verbose: bool = False) -> None:
    """Configure logging with console + rotating file output."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console goes to stderr so command output stays clean on stdout
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(fmt)
    root.addHandler(console)

    # File handler (rotate at 5MB, keep 3 backups)
    log_dir = Path(get_db_path(config)).parent
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        str(log_dir / "letterintel.log"), maxBytes=5 * 1024 * 1024, backupCount=3,
    )
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("trafilatura").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


logger = logging.getLogger("letterintel")


def _connect(config: dict):
    db_path = get_db_path(config)
    init_db(db_path)
    return get_connection(db_path)


def cmd_init_db(config: dict, args: argparse.Namespace) -> None:
    """Initialize the SQLite database."""
    db_path = get_db_path(config)
    init_db(db_path)
    print(f"Database initialized at {db_path}")


async def cmd_ingest(config: dict, args: argparse.Namespace) -> None:
    """Fetch, chunk and embed new newsletters."""
    from letterintel.pipeline import run_ingest
    from letterintel.process.embeddings import build_embedder

    init_db(get_db_path(config))
    since = datetime.fromisoformat(args.since) if args.since else None
    embedder = None if args.no_embed else build_embedder(config)
    run = await run_ingest(config, embedder=embedder, since=since)
    print(
        f"Run #{run.id}: {run.messages_fetched} fetched, {run.messages_stored} stored, "
        f"{run.duplicates_skipped} duplicates, {run.chunks_created} chunks "
        f"({run.junk_chunks} junk), {run.chunks_embedded} embedded"
    )


async def cmd_embed(config: dict, args: argparse.Namespace) -> None:
    """Embed any chunks still missing vectors."""
    from letterintel.process.embeddings import build_embedder, embed_pending_chunks

    conn = _connect(config)
    try:
        count = await embed_pending_chunks(conn, build_embedder(config), config)
    finally:
        conn.close()
    print(f"Embedded {count} chunks")


async def cmd_search(config: dict, args: argparse.Namespace) -> None:
    """Answer a question from the archive."""
    from letterintel.llm import get_provider_for_task
    from letterintel.process.embeddings import build_embedder
    from letterintel.retrieve.hybrid import HybridRetriever
    from letterintel.search import SearchService
    from letterintel.synthesize.answer import AnswerSynthesizer
    from letterintel.synthesize.extractor import FactExtractor
    from letterintel.synthesize.report import format_search_result

    conn = _connect(config)
    try:
        service = SearchService(
            retriever=HybridRetriever(conn, build_embedder(config), config),
            extractor=FactExtractor(get_provider_for_task(config, "extract"), config),
            synthesizer=AnswerSynthesizer(get_provider_for_task(config, "synthesize"), config),
            config=config,
        )
        result = await service.search(" ".join(args.query))
    finally:
        conn.close()
    print(format_search_result(result), end="")


def _assembler(config: dict, conn):
    from letterintel.briefing import BriefingAssembler
    from letterintel.llm import get_provider_for_task
    from letterintel.process.embeddings import build_embedder

    return BriefingAssembler(
        conn,
        config,
        get_provider_for_task(config, "briefing"),
        build_embedder(config),
        insight_provider=get_provider_for_task(config, "insights"),
        narrative_provider=get_provider_for_task(config, "narratives"),
    )


async def cmd_briefing(config: dict, args: argparse.Namespace) -> None:
    """Generate a new briefing."""
    from letterintel.synthesize.report import format_briefing

    conn = _connect(config)
    try:
        briefing = await _assembler(config, conn).generate(window_hours=args.hours)
    finally:
        conn.close()
    print(format_briefing(briefing), end="")


def cmd_show(config: dict, args: argparse.Namespace) -> None:
    """Show a stored briefing."""
    from letterintel.briefing import load_briefing
    from letterintel.synthesize.report import format_briefing

    conn = _connect(config)
    try:
        briefing = load_briefing(conn, args.briefing_id)
    finally:
        conn.close()
    print(format_briefing(briefing), end="")


def cmd_archive(config: dict, args: argparse.Namespace) -> None:
    """List recent briefings."""
    from letterintel.briefing import list_archive
    from letterintel.synthesize.report import format_archive

    conn = _connect(config)
    try:
        entries = list_archive(conn, args.limit)
    finally:
        conn.close()
    print(format_archive(entries), end="")


def cmd_reconcile(config: dict, args: argparse.Namespace) -> None:
    """Remove superseded duplicate chunks (dry run unless --apply)."""
    from letterintel.process.dedup import reconcile_chunks

    conn = _connect(config)
    try:
        stats = reconcile_chunks(conn, dry_run=not args.apply)
    finally:
        conn.close()
    mode = "DRY RUN" if stats.dry_run else "APPLIED"
    print(
        f"[{mode}] {stats.duplicate_groups} duplicate groups across "
        f"{stats.messages_affected} messages; {stats.rows_to_delete} rows to delete, "
        f"{stats.rows_deleted} deleted"
    )


def cmd_flag_junk(config: dict, args: argparse.Namespace) -> None:
    """Re-evaluate junk flags on all chunks."""
    from letterintel.process.quality import flag_junk_chunks

    conn = _connect(config)
    try:
        changed = flag_junk_chunks(conn, config)
    finally:
        conn.close()
    print(f"Junk flag changed on {changed} chunks")


def cmd_score_publishers(config: dict, args: argparse.Namespace) -> None:
    """Recompute publisher quality scores."""
    from letterintel.db import list_publishers
    from letterintel.process.quality import recompute_publisher_scores

    conn = _connect(config)
    try:
        recompute_publisher_scores(conn, config)
        publishers = list_publishers(conn)
    finally:
        conn.close()
    publishers.sort(key=lambda p: -(p.quality_score or 0))
    print(f"{'Score':>6}  {'Override':<8}  Publisher")
    print("-" * 60)
    for p in publishers:
        flag = "yes" if p.has_override else ""
        print(f"{(p.quality_score or 0):>6.1f}  {flag:<8}  {p.display_name or p.publisher_id}")


def _parse_signal_args(values: list[str]) -> dict[str, float]:
    signals = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"Expected signal=value, got '{item}'")
        signals[name.strip()] = float(value)
    return signals


def cmd_override(config: dict, args: argparse.Namespace) -> None:
    """Set or clear a manual quality override."""
    from letterintel.process.quality import clear_manual_override, set_manual_override

    conn = _connect(config)
    try:
        if args.clear:
            clear_manual_override(conn, args.publisher, args.author)
            print(f"Override cleared on {args.publisher}")
            return
        publisher = set_manual_override(
            conn,
            args.publisher,
            reason=args.reason,
            author=args.author,
            score=args.score,
            signals=_parse_signal_args(args.signal),
            config=config,
        )
    finally:
        conn.close()
    print(f"{publisher.publisher_id}: quality score now {publisher.quality_score:.1f}")


def cmd_publisher_set(config: dict, args: argparse.Namespace) -> None:
    """Record externally sourced publisher attributes."""
    fields = {
        name: getattr(args, name)
        for name in (
            "platform", "subscriber_estimate",
            "recommendation_count", "topic_relevance",
        )
        if getattr(args, name) is not None
    }
    conn = _connect(config)
    try:
        update_publisher_attributes(conn, args.publisher, **fields)
    finally:
        conn.close()
    print(f"Updated {args.publisher}: {', '.join(sorted(fields)) or 'nothing'}")


async def cmd_index_build(config: dict, args: argparse.Namespace) -> None:
    """Start a vector index build; optionally wait for full coverage."""
    from letterintel.process.vector_index import start_index_build, wait_for_coverage

    db_path = get_db_path(config)
    init_db(db_path)
    model = get_embedding_config(config)["model"]
    task = start_index_build(db_path, model)
    if args.wait:
        # Progress is logged by the poller while the build task runs
        await wait_for_coverage(db_path, model, poll_interval=args.poll)
    status = await task
    print(f"Index for {model}: {status.status}, {status.coverage_pct:.1f}% coverage")


def cmd_index_status(config: dict, args: argparse.Namespace) -> None:
    """Show vector index status."""
    from letterintel.process.vector_index import index_status

    model = get_embedding_config(config)["model"]
    conn = _connect(config)
    try:
        status = index_status(conn, model)
    finally:
        conn.close()
    print(
        f"Index for {model}: {status.status}, {status.indexed_rows}/{status.total_rows} "
        f"({status.coverage_pct:.1f}%)"
    )


def cmd_stats(config: dict, args: argparse.Namespace) -> None:
    """Show corpus counts and recent ingestion runs."""
    conn = _connect(config)
    try:
        counts = get_corpus_stats(conn)
        runs = get_recent_runs(conn, limit=10)
    finally:
        conn.close()

    print("  ".join(f"{name}: {value}" for name, value in counts.items()))
    print()
    if not runs:
        print("No ingestion runs yet.")
        return

    header = (
        f"{'Run':>4} {'Status':<10} {'Fetched':<8} {'Stored':<8} "
        f"{'Chunks':<8} {'Embedded':<9} {'Started'}"
    )
    print(header)
    print("-" * 70)
    for r in runs:
        print(
            f"{r['id']:>4} {r['status']:<10} "
            f"{r['messages_fetched']:<8} {r['messages_stored']:<8} "
            f"{r['chunks_created']:<8} {r['chunks_embedded']:<9} {r['started_at']}"
        )


COMMANDS = {
    "init-db": cmd_init_db,
    "ingest": cmd_ingest,
    "embed": cmd_embed,
    "search": cmd_search,
    "briefing": cmd_briefing,
    "show": cmd_show,
    "archive": cmd_archive,
    "reconcile": cmd_reconcile,
    "flag-junk": cmd_flag_junk,
    "score-publishers": cmd_score_publishers,
    "override": cmd_override,
    "publisher-set": cmd_publisher_set,
    "index-build": cmd_index_build,
    "index-status": cmd_index_status,
    "stats": cmd_stats,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="letterintel", description="Newsletter intelligence")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help=cmd_init_db.__doc__)

    p = sub.add_parser("ingest", help=cmd_ingest.__doc__)
    p.add_argument("--since", help="Only messages sent after this ISO timestamp")
    p.add_argument("--no-embed", action="store_true", help="Skip the embedding step")

    sub.add_parser("embed", help=cmd_embed.__doc__)

    p = sub.add_parser("search", help=cmd_search.__doc__)
    p.add_argument("query", nargs="+")

    p = sub.add_parser("briefing", help=cmd_briefing.__doc__)
    p.add_argument("--hours", type=float, help="Window length (default: since last briefing)")

    p = sub.add_parser("show", help=cmd_show.__doc__)
    p.add_argument("briefing_id", nargs="?", default="latest")

    p = sub.add_parser("archive", help=cmd_archive.__doc__)
    p.add_argument("--limit", type=int, default=30)

    p = sub.add_parser("reconcile", help=cmd_reconcile.__doc__)
    p.add_argument("--apply", action="store_true", help="Actually delete (default: dry run)")

    sub.add_parser("flag-junk", help=cmd_flag_junk.__doc__)
    sub.add_parser("score-publishers", help=cmd_score_publishers.__doc__)

    p = sub.add_parser("override", help=cmd_override.__doc__)
    p.add_argument("publisher", help="Publisher id (sender email)")
    p.add_argument("--score", type=float, help="Full score override, 0-100")
    p.add_argument("--signal", action="append", help="Signal override, e.g. citation=0.8")
    p.add_argument("--reason", default="")
    p.add_argument("--author", default=os.environ.get("USER", ""))
    p.add_argument("--clear", action="store_true")

    p = sub.add_parser("publisher-set", help=cmd_publisher_set.__doc__)
    p.add_argument("publisher")
    p.add_argument("--platform")
    p.add_argument("--subscriber-estimate", dest="subscriber_estimate", type=int)
    p.add_argument("--recommendation-count", dest="recommendation_count", type=int)
    p.add_argument("--topic-relevance", dest="topic_relevance", type=float)

    p = sub.add_parser("index-build", help=cmd_index_build.__doc__)
    p.add_argument("--wait", action="store_true", help="Poll until coverage is complete")
    p.add_argument("--poll", type=float, default=5.0, help="Poll interval in seconds")

    sub.add_parser("index-status", help=cmd_index_status.__doc__)
    sub.add_parser("stats", help=cmd_stats.__doc__)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = load_config(os.environ.get("CONFIG_PATH", "config.yaml"))
    setup_logging(config, verbose=args.verbose)
    handler = COMMANDS[args.command]

    try:
        if inspect.iscoroutinefunction(handler):
            asyncio.run(handler(config, args))
        else:
            handler(config, args)
    except (LetterIntelError, ValueError) as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
