#!/usr/bin/env python3
"""
CSRF Client

Command-line client that obtains a CSRF token from a running Subtitle Studio
API and optionally checks it against the server.

This is the composition root for the client side: it owns the HTTP client
and the single CsrfTokenManager of the process, and tears both down on exit.

Usage:
    python scripts/csrf_client.py                      # fetch and print a token
    python scripts/csrf_client.py --validate           # fetch, then POST /api/csrf
    python scripts/csrf_client.py --base-url http://localhost:8000 --watch 900
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import httpx

# Add project root to path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from substudio.client import CsrfTokenManager, CsrfTokenState, send_with_csrf  # noqa: E402
from substudio.config import get_settings  # noqa: E402
from substudio.utils.logging_utils import setup_logger  # noqa: E402
from substudio.utils.timestamp_utils import format_ms_to_iso  # noqa: E402


def print_state(state: CsrfTokenState) -> None:
    """Subscriber that prints every manager state transition."""
    if state.is_loading:
        print("INFO: Fetching CSRF token...")
    elif state.error:
        print(f"ERROR: CSRF token unavailable: {state.error}")
    elif state.token:
        print(f"INFO: CSRF token ready (expires {format_ms_to_iso(state.expires)})")


async def run(base_url: str, token_endpoint: str, validate: bool, watch_seconds: int) -> int:
    async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as http_client:
        manager = CsrfTokenManager(http_client, token_url=token_endpoint)
        manager.subscribe(print_state)

        try:
            await manager.initialize()
            token = await manager.get_token()
            if not token:
                return 1

            print(token)

            if validate:
                response = await send_with_csrf(
                    http_client, manager, "POST", token_endpoint,
                    json={"token": token}
                )
                print(f"INFO: Validation response {response.status_code}: {response.json()}")
                if response.status_code != 200:
                    return 1

            if watch_seconds > 0:
                print(f"INFO: Watching token refreshes for {watch_seconds}s (Ctrl+C to stop)")
                await asyncio.sleep(watch_seconds)

            return 0
        finally:
            manager.destroy()


def main() -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Fetch and check a CSRF token from the Subtitle Studio API")
    parser.add_argument("--base-url", default=settings.api_base_url, help="API base URL")
    parser.add_argument("--endpoint", default=settings.csrf_token_endpoint, help="Token endpoint path")
    parser.add_argument("--validate", action="store_true", help="Validate the token with POST after fetching it")
    parser.add_argument("--watch", type=int, default=0, metavar="SECONDS",
                        help="Keep running to observe scheduled refreshes")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    setup_logger(log_level=logging.DEBUG if args.verbose else settings.log_level)

    return asyncio.run(run(args.base_url, args.endpoint, args.validate, args.watch))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user. Exiting...")
        sys.exit(1)
