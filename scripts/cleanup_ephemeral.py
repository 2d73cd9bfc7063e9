#!/usr/bin/env python3
"""Daily cleanup of ephemeral forum data.

Deletes the day's questions, the global solution copies and the search
indexes in one multi-path update.  Meant to run from cron once a day.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_src = Path(__file__).resolve().parent.parent / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyripple import RippleClient, RippleConfig  # noqa: E402
from pyripple.forum.actions import cleanup_ephemeral  # noqa: E402
from pyripple.paths import EPHEMERAL_ROOTS  # noqa: E402


async def main() -> None:
    parser = argparse.ArgumentParser(description="Delete ephemeral forum data.")
    parser.add_argument("--dry-run", action="store_true", help="Only print the roots that would be deleted")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.dry_run:
        for root in EPHEMERAL_ROOTS:
            print(root)
        return

    async with RippleClient(RippleConfig.from_env()) as client:
        await cleanup_ephemeral(client.store)


if __name__ == "__main__":
    asyncio.run(main())
