"""
Fetch the epidemiological sources and publish a fresh snapshot.

Usage: run_pipeline.py [cache_dir]

When cache_dir is given, downloaded sources are cached there (and reused on
the next run) and the reconciled record sets are written alongside them.
Database connection settings come from the environment (DB_HOST,
DB_USERNAME, DB_PASSWORD, DB_DATABASE, DB_REQUIRE_TLS).
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

# Add current directory to path to allow imports from core, ingestion, etc.
sys.path.append(os.getcwd())

from core.config import Settings, load_settings
from core.database import create_engine_from_settings
from core.exceptions import PipelineException
from core.logging import setup_logging
from ingestion.extractors.fetcher import CachedFetcher
from ingestion.loaders.snapshot_publisher import SnapshotPublisher
from ingestion.runner import PipelineRunner

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "cache_dir",
        nargs="?",
        default=None,
        help="directory for cached sources and JSON dumps of the snapshot"
    )
    return parser.parse_args(argv)


async def run_pipeline(settings: Settings, cache_dir: Optional[Path] = None):
    """Run the pipeline once against the configured database"""
    engine = create_engine_from_settings(settings)

    try:
        async with CachedFetcher(
            cache_dir=cache_dir,
            timeout=settings.FETCH_TIMEOUT_SECONDS,
            max_redirects=settings.FETCH_MAX_REDIRECTS,
            max_concurrency=settings.FETCH_CONCURRENCY
        ) as fetcher:
            runner = PipelineRunner(
                fetcher=fetcher,
                publisher=SnapshotPublisher(engine, batch_size=settings.INSERT_BATCH_SIZE),
                output_dir=cache_dir
            )
            return await runner.run()
    finally:
        await engine.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        settings = load_settings()
    except PipelineException as e:
        setup_logging()
        logger.error(str(e))
        return 1

    setup_logging(settings.LOG_LEVEL)
    cache_dir = Path(args.cache_dir) if args.cache_dir else None

    try:
        asyncio.run(run_pipeline(settings, cache_dir))
    except PipelineException as e:
        logger.error(
            f"Pipeline run failed: {e}",
            extra={"error_context": e.to_dict()}
        )
        return 1
    except Exception:
        logger.exception("Unexpected error in pipeline run")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
