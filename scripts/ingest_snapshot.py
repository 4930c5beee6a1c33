from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from dexsnap.config import BASELINE_POLICIES, settings
from dexsnap.errors import ConfigError, IngestionAborted
from dexsnap.ingestion.pipeline import build_pipeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Snapshot every Uniswap v2 pair at a recent fixed block into SQLite.")
    parser.add_argument("--page-size", type=int, default=settings.page_size, help="Pairs per subgraph page.")
    parser.add_argument("--max-retries", type=int, default=settings.max_retries, help="Attempts per page before giving up.")
    parser.add_argument(
        "--retry-delay", type=float, default=settings.retry_delay_seconds, help="Seconds to wait between attempts."
    )
    parser.add_argument("--lag", type=int, default=settings.height_lag, help="Blocks to stay behind the chain tip.")
    parser.add_argument(
        "--baseline-policy",
        choices=BASELINE_POLICIES,
        default=settings.baseline_policy,
        help="Abort or continue when the total pair count cannot be fetched.",
    )
    parser.add_argument("--data-dir", type=Path, default=settings.data_dir, help="Directory for snapshot databases.")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = replace(
        settings,
        page_size=args.page_size,
        max_retries=args.max_retries,
        retry_delay_seconds=args.retry_delay,
        height_lag=args.lag,
        baseline_policy=args.baseline_policy,
        data_dir=args.data_dir,
    )
    try:
        config.ensure_paths()
        pipeline = build_pipeline(config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    try:
        summary = await pipeline.run()
    except IngestionAborted as exc:
        logger.error(
            "Run failed in stage %s (height=%s); %s pairs remain in %s",
            exc.stage,
            exc.height,
            exc.records_persisted,
            exc.destination or "<no destination>",
        )
        return 1

    logger.info("Ingestion summary: %s", summary.model_dump())
    print(json.dumps(summary.model_dump(mode="json"), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
