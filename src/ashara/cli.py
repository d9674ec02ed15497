"""Command line utilities for checking API connectivity."""

from __future__ import annotations

import argparse
import logging

from ashara.client import RestClient
from ashara.exceptions import AsharaError

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ashara-ping", description="Measure round-trip latency to the API.")
    parser.add_argument("--token", default=None, help="bot token (defaults to $ASHARA_BOT_TOKEN)")
    parser.add_argument("--base-url", default=None, help="API base URL (defaults to $ASHARA_API_BASE_URL)")
    parser.add_argument("--count", type=int, default=1, help="number of pings to send")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every attempt")
    args = parser.parse_args(argv)
    if args.count < 1:
        parser.error("--count must be at least 1")
    return args


def _main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        with RestClient(token=args.token, base_url=args.base_url) as client:
            for index in range(1, args.count + 1):
                latency = client.ping()
                logger.info("ping %d answered", index)
                print(f"ping {index}: {latency * 1000:.1f} ms")
    except AsharaError as exc:
        print(f"Ping failed: {exc}")
        return 1
    return 0


def main() -> None:
    raise SystemExit(_main())
