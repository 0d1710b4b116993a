"""
Command-line interface for the ingestion pipeline.

Usage:
    python -m nounish_ingest run
    python -m nounish_ingest ingest --type casts
    python -m nounish_ingest snapshots
    python -m nounish_ingest builder-profiles
    python -m nounish_ingest watermarks
"""

import argparse
import sys

from nounish_ingest.config import PipelineSettings, load_settings
from nounish_ingest.core.models import IngestionType
from nounish_ingest.ingestion.discovery import format_timestamp
from nounish_ingest.observability.logger import get_logger, set_log_level
from nounish_ingest.observability.metrics import start_metrics_server
from nounish_ingest.pipeline import IngestionPipeline, build_watermark_store
from nounish_ingest.scheduler import build_scheduler
from nounish_ingest.sink import EmbeddingsQueueClient
from nounish_ingest.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


def create_pool(args) -> DatabaseConnectionPool:
    """Open the warehouse pool from CLI arguments (env vars fill the gaps)."""
    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
        conninfo=args.db_url,
    )
    pool.open()
    return pool


def create_pipeline(args, settings: PipelineSettings) -> IngestionPipeline:
    pool = create_pool(args)
    queue = EmbeddingsQueueClient(
        base_url=settings.queue.base_url,
        api_key=settings.queue.api_key,
        timeout=settings.queue.timeout_seconds,
    )
    return IngestionPipeline(settings, pool, queue)


def close_pipeline(pipeline: IngestionPipeline) -> None:
    pipeline.close()
    pipeline.pool.close()


def run_command(args, settings: PipelineSettings):
    """Start the scheduler and block until interrupted."""
    if args.metrics_port:
        start_metrics_server(args.metrics_port)
        logger.info(f"Metrics server listening on port {args.metrics_port}")

    pipeline = create_pipeline(args, settings)
    scheduler, jobs = build_scheduler(pipeline, blocking=True)
    logger.info(f"Starting scheduler with jobs: {', '.join(jobs)}")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
    finally:
        close_pipeline(pipeline)


def ingest_command(args, settings: PipelineSettings):
    """Run a single discovery pass for one type."""
    ingestion_type = IngestionType.parse(args.type)
    pipeline = create_pipeline(args, settings)
    try:
        result = pipeline.run_type(ingestion_type, args.min_time)

        logger.info("=" * 60)
        logger.info(f"DISCOVERY COMPLETE: {ingestion_type.value}")
        logger.info("=" * 60)
        logger.info(f"Files seen: {result.seen}")
        logger.info(f"Files processed: {len(result.processed)}")
        logger.info(f"Files failed: {len(result.failed)}")
        logger.info(f"Files skipped: {result.skipped}")
        logger.info(f"Watermark: {format_timestamp(result.watermark)}")
        logger.info("=" * 60)

        if not result.ok:
            sys.exit(1)
    finally:
        close_pipeline(pipeline)


def snapshots_command(args, settings: PipelineSettings):
    """Refresh all CSV snapshots."""
    pipeline = create_pipeline(args, settings)
    try:
        counts = pipeline.refresh_snapshots()
        for file_name, count in counts.items():
            logger.info(f"{file_name}: {count} rows")
    finally:
        close_pipeline(pipeline)


def builder_profiles_command(args, settings: PipelineSettings):
    """Post builder-profile jobs for every grant recipient with a known fid."""
    pipeline = create_pipeline(args, settings)
    try:
        posted = pipeline.run_builder_profiles()
        logger.info(f"Posted {posted} builder-profile jobs")
    finally:
        close_pipeline(pipeline)


def watermarks_command(args, settings: PipelineSettings):
    """Print the stored watermark of every type."""
    pool = create_pool(args) if settings.watermark.backend == "postgres" else None
    try:
        store = build_watermark_store(settings, pool)
        for ingestion_type, timestamp in store.all().items():
            print(f"{ingestion_type.value:<16} {format_timestamp(timestamp)}")
    finally:
        if pool is not None:
            pool.close()


COMMANDS = {
    "run": run_command,
    "ingest": ingest_command,
    "snapshots": snapshots_command,
    "builder-profiles": builder_profiles_command,
    "watermarks": watermarks_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nounish-ingest",
        description="Incremental Farcaster ingestion and enrichment pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all jobs on their schedules, exposing Prometheus metrics
  python -m nounish_ingest run --metrics-port 8000

  # One pass over new cast files
  python -m nounish_ingest ingest --type casts

  # Rebuild profiles.csv, grants.csv and nounish-citizens.csv
  python -m nounish_ingest snapshots
        """
    )

    parser.add_argument(
        "--config",
        help="Path to pipeline YAML (default: $PIPELINE_CONFIG or config/pipeline.yaml)"
    )
    parser.add_argument(
        "--log-level",
        help="Log level (default: $LOG_LEVEL or INFO)"
    )
    parser.add_argument("--db-url", help="Database connection URL (overrides --db-* options)")
    parser.add_argument("--db-host", help="Database host (default: $DB_HOST)")
    parser.add_argument("--db-port", type=int, help="Database port (default: $DB_PORT)")
    parser.add_argument("--db-name", help="Database name (default: $DB_NAME)")
    parser.add_argument("--db-user", help="Database user (default: $DB_USER)")
    parser.add_argument("--db-password", help="Database password (default: $DB_PASSWORD)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the scheduler")
    run_parser.add_argument(
        "--metrics-port",
        type=int,
        help="Expose Prometheus metrics on this port"
    )

    ingest_parser = subparsers.add_parser("ingest", help="Run one discovery pass")
    ingest_parser.add_argument(
        "--type",
        required=True,
        choices=[t.value for t in IngestionType],
        help="Ingestion type"
    )
    ingest_parser.add_argument(
        "--min-time",
        type=int,
        help="Floor timestamp in epoch ms (default: now minus the type's lookback)"
    )

    subparsers.add_parser("snapshots", help="Refresh CSV snapshots")
    subparsers.add_parser("builder-profiles", help="Queue builder-profile jobs for grant recipients")
    subparsers.add_parser("watermarks", help="Show stored watermarks")

    return parser


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.log_level:
        set_log_level(args.log_level)

    settings = load_settings(args.config)

    try:
        COMMANDS[args.command](args, settings)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
