"""
Create the record store tables (or data files) for the configured backend.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from menu_backend.config import get_settings
from menu_backend.dependencies import build_record_store
from menu_backend.errors import StorageUnavailable

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Initialize menu storage")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Override the file backend data directory",
    )
    parser.add_argument(
        "--file-backend",
        action="store_true",
        help="Initialize the file backend even if a database URL is set",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    updates = {}
    if args.database_url:
        updates["database_url"] = args.database_url
    if args.data_dir:
        updates["data_dir"] = args.data_dir
    if args.file_backend:
        updates["use_file_backend"] = True
    settings = get_settings().model_copy(update=updates)

    try:
        store = build_record_store(settings)
        store.initialize()
    except StorageUnavailable as exc:
        logger.error("Initialization failed: %s", exc)
        return 1
    logger.info("Storage initialized with %s", type(store).__name__)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
