"""Command-line interface for running lecture video ingestion."""

import argparse
import asyncio

from lecturechat.ledger import load_price_table
from lecturechat.storage.storage_service import StorageService
from lecturechat.utils.clients import (
    build_ingestion_pipeline,
    get_http_client,
    get_supabase_client,
)
from lecturechat.utils.logging import get_logger

from .config import get_config
from .worker import IngestionWorkerPool

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Lecture ingestion - extract, chunk and index video transcripts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest two videos already registered in the videos table
  python -m lecturechat.ingestion.cli vid_123 vid_456

  # Re-sync a completed video (chunks are swapped atomically)
  python -m lecturechat.ingestion.cli vid_123 --resync

  # Requeue videos stuck in an in-flight state
  python -m lecturechat.ingestion.cli --recover-stuck
        """,
    )
    parser.add_argument("video_ids", nargs="*", help="Video ids to ingest")
    parser.add_argument(
        "--resync",
        action="store_true",
        help="Re-run ingestion for completed videos and replace their chunks",
    )
    parser.add_argument(
        "--recover-stuck",
        action="store_true",
        help="Reset and requeue videos stuck in an in-flight state",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Override the number of concurrent ingestion workers",
    )
    return parser


async def main(argv: list[str] | None = None) -> int:
    """CLI entry point for lecture ingestion.

    Returns:
        Process exit code: 0 when every job completed or was skipped.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.video_ids and not args.recover_stuck:
        parser.error("pass at least one video id or --recover-stuck")

    config = get_config()
    if args.concurrency:
        config.worker_concurrency = args.concurrency

    logger.info(
        "cli_started",
        videos=len(args.video_ids),
        resync=args.resync,
        recover_stuck=args.recover_stuck,
        concurrency=config.worker_concurrency,
    )

    print("\n" + "=" * 60)
    print("Lecture Ingestion")
    print("=" * 60)
    print(f"Videos requested: {len(args.video_ids)}")
    print(f"Workers: {config.worker_concurrency}")
    print(f"Embedding model: {config.embedding_model}")
    print(f"Chunk size: {config.chunk_target_words} words ({config.chunk_overlap_words} overlap)")
    if args.resync:
        print("\nRe-sync mode: completed videos will be reprocessed")
    print("=" * 60 + "\n")

    supabase = get_supabase_client(config)
    repository = StorageService(config, client=supabase)

    async with get_http_client(config) as http_client:
        pipeline = build_ingestion_pipeline(
            config,
            repository,
            http_client,
            supabase=supabase,
            price_table=load_price_table(),
        )
        pool = IngestionWorkerPool(pipeline, repository, config, history_limit=None)

        if args.recover_stuck:
            recovered = await pool.recover_stuck_videos()
            print(f"Recovered stuck videos: {len(recovered)}")

        for video_id in args.video_ids:
            outcome = await pool.request_ingestion(video_id, force_resync=args.resync)
            print(f"  {video_id}: {outcome}")

        await pool.start()
        try:
            await pool.join()
        finally:
            await pool.stop()

    print("\n" + "=" * 60)
    print("Ingestion Results")
    print("=" * 60)
    failures = 0
    for result in pool.results:
        line = f"  {result.video_id}: {result.status}"
        if result.status == "completed":
            method = result.method.value if result.method else "unknown"
            line += f" ({result.chunks_created} chunks via {method}, ${result.cost_usd:.4f})"
        elif result.error:
            line += f" - {result.error}"
            failures += 1
        print(line)
    for letter in pool.dead_letters:
        failures += 1
        print(f"  {letter.job.video_id}: dead-lettered - {letter.error}")
    print("=" * 60 + "\n")

    logger.info(
        "cli_completed",
        jobs=len(pool.results),
        failures=failures,
        dead_letters=len(pool.dead_letters),
    )
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
