#!/usr/bin/env python3
"""Entry point for the ERC-20 transfer monitor.

Watches the configured token contracts for Transfer events. With an address
argument only transfers to or from that address are reported, labelled by
direction; without one every transfer is reported.
"""

import argparse
import asyncio
import logging
import os
import re
import signal
import sys

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from transfer_monitor.balance_reporter import BalanceReporter
from transfer_monitor.orchestrator import InitializationError, ScanOrchestrator


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="ERC-20 Transfer Monitor - report token transfers as they happen",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  ETHEREUM_RPC_URL       - Primary RPC endpoint (default: https://eth.llamarpc.com)
  BACKUP_RPC_URLS        - Comma separated backup RPC endpoints
  POLL_INTERVAL_MS       - Delay between polls (default: 5000, min 1000)
  MAX_BLOCKS_TO_SCAN     - Widest block window per poll (default: 100, max 1000)
  RETRY_ATTEMPTS         - Attempts per RPC call (default: 3)
  RETRY_DELAY_MS         - Base retry delay (default: 1000)
  BATCH_SIZE             - Concurrent contract scans (default: 10)
  CONNECTION_TIMEOUT_MS  - Per-call RPC timeout (default: 30000)
  WEBHOOK_URL            - Notification endpoint (optional)
  WEBHOOK_TIMEOUT_MS     - Notification timeout (default: 5000)
  ENABLE_DETAILED_LOGS   - Set to 'true' for per-cycle logs
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "address",
        nargs="?",
        default=None,
        help="Address to watch (0x followed by 40 hex digits); omit to report all transfers"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Log every scanned block range and webhook delivery"
    )
    return parser.parse_args(argv)


async def main() -> None:
    """Main entry point for the transfer monitor.

    Raises:
        SystemExit: On invalid input, configuration or initialization errors
    """
    args: argparse.Namespace = parse_args()
    setup_logging(args.log_level)

    if args.address is not None and not ADDRESS_PATTERN.match(args.address):
        logger.error(f"Invalid address format: {args.address}")
        logger.error("Expected 0x followed by 40 hexadecimal digits")
        sys.exit(1)

    if args.address:
        logger.info(f"=== Transfer Monitor Starting (address {args.address}) ===")
    else:
        logger.info("=== Transfer Monitor Starting (all transfers) ===")

    try:
        monitor: ScanOrchestrator = ScanOrchestrator.from_env(
            watched_address=args.address,
            verbose=args.verbose
        )
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        sys.exit(1)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, monitor.stop)

    try:
        if monitor.config.watched_address:
            reporter = BalanceReporter(
                ledger=monitor.ledger,
                executor=monitor.executor,
                cache=monitor.cache,
                contracts=monitor.config.contracts
            )
            await reporter.log_balances(monitor.config.watched_address)
            logger.info("=" * 50)

        await monitor.start()

    except InitializationError as e:
        logger.error(f"Cannot start monitor: {e}")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
