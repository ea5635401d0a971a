from __future__ import annotations

import argparse
import logging
import sys

from bootstrap import (
    MIGRATION_MARKER_KEY,
    clear_bootstrap_marker,
    has_bootstrap_marker,
    run_bootstrap_migrations,
    set_bootstrap_marker,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create or upgrade the registration admin schema (teams, members, call logs, email logs, sync jobs)."
    )
    parser.add_argument("--force", action="store_true", help="Rerun even when the schema marker is present.")
    parser.add_argument(
        "--clear-marker",
        action="store_true",
        help=f"Drop the `{MIGRATION_MARKER_KEY}` marker, then run.",
    )
    parser.add_argument("--clear-only", action="store_true", help="Drop the marker and exit.")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    if args.clear_marker or args.clear_only:
        state = "cleared" if clear_bootstrap_marker() else "already absent"
        logger.info("Schema marker %s: %s", MIGRATION_MARKER_KEY, state)
        if args.clear_only:
            return 0

    if not args.force and has_bootstrap_marker():
        logger.info("Schema already bootstrapped (%s); pass --force to rerun", MIGRATION_MARKER_KEY)
        return 0

    run_bootstrap_migrations()
    set_bootstrap_marker()
    logger.info("Schema bootstrap finished")
    return 0


if __name__ == "__main__":
    sys.exit(main())
