from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dexsnap.config import settings
from dexsnap.storage import SqlitePairStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export one snapshot height to CSV for analysis.")
    parser.add_argument("--height", type=int, required=True, help="Block height of the snapshot to export.")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Destination CSV path (default: data/export/uniswapv2_pairs_<height>.csv).",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    db_path = settings.db_path(args.height)
    if not db_path.exists():
        logger.error("No snapshot database at %s", db_path)
        return 1

    output = args.output or settings.data_dir / "export" / f"uniswapv2_pairs_{args.height}.csv"
    with SqlitePairStore(db_path) as store:
        rows = store.export_csv(output)
    logger.info("Export complete: %s rows -> %s", rows, output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
