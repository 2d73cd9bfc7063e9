#!/usr/bin/env python3
"""Print live snapshots of one database path.

Reads ``RIPPLE_DATABASE_URL`` / ``RIPPLE_AUTH_TOKEN`` from the environment
and prints every snapshot delivered at the path as one JSON line.
Useful to check security rules and the shape of stored records.

Usage::

    python scripts/watch_path.py groups/g1 --count 3 -v
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_src = Path(__file__).resolve().parent.parent / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyripple import RippleClient, RippleConfig, StoreError  # noqa: E402


async def main() -> int:
    parser = argparse.ArgumentParser(description="Print live snapshots of a database path.")
    parser.add_argument("path", help="Path to watch, e.g. groups/g1")
    parser.add_argument("--count", "-n", type=int, default=0, help="Stop after N snapshots (default: run forever)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = RippleConfig.from_env()
    received = 0
    async with RippleClient(config) as client:
        subscription = client.subscribe(args.path)
        try:
            async for snapshot in subscription:
                line = {
                    "path": snapshot.path,
                    "received_at": snapshot.received_at.isoformat(),
                    "value": snapshot.value,
                }
                print(json.dumps(line, ensure_ascii=False, default=str), flush=True)
                received += 1
                if args.count and received >= args.count:
                    break
        except StoreError as exc:
            print(f"subscription failed: {exc}", file=sys.stderr)
            return 1
        finally:
            client.release(args.path)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
