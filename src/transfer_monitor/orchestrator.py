"""
Transfer monitor orchestration.

This module contains the polling loop that drives scanning across all
configured contracts, advances the scan cursor and hands observed transfers
to the log output and the notification dispatcher.
"""

import asyncio
import logging
from enum import Enum
from typing import Any

from .config import MonitorConfig
from .models import ContractDescriptor, Direction, TransferEvent
from .notification_dispatcher import NotificationDispatcher
from .scan_cursor import ScanCursor
from .transfer_scanner import TransferScanner
from .utils.aux_cache import AuxCache
from .utils.endpoint_pool import RpcEndpointPool
from .utils.ledger_client import LedgerClient
from .utils.retry_executor import RetryExecutor

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    """Lifecycle state of the orchestrator."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    POLLING = "polling"
    STOPPED = "stopped"


class InitializationError(Exception):
    """The chain height could not be fetched at startup."""


class ScanOrchestrator:
    """
    Main monitor service that runs the polling loop.

    Each cycle scans every contract over the same block range with bounded
    fan-out. A failing contract is logged and contributes no events; the
    cursor still advances once every contract has been attempted.
    """

    METRICS_LOG_INTERVAL = 10  # cycles

    def __init__(
        self,
        config: MonitorConfig,
        pool: RpcEndpointPool | None = None,
        ledger: LedgerClient | None = None,
        dispatcher: NotificationDispatcher | None = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Monitor configuration
            pool: Endpoint pool (built from config when omitted)
            ledger: Ledger client (built on the pool when omitted)
            dispatcher: Notification dispatcher (built from config when omitted)
        """
        self.config = config
        monitoring = config.monitoring

        self.pool = pool or RpcEndpointPool(config.rpc.endpoints)
        self.ledger = ledger or LedgerClient(self.pool, config.rpc.timeout_seconds)
        self.executor = RetryExecutor(
            self.pool,
            max_attempts=monitoring.retry_attempts,
            base_delay=monitoring.retry_delay_seconds
        )
        self.cache = AuxCache(self.ledger, self.executor, max_size=monitoring.cache_size)
        self.scanner = TransferScanner(
            ledger=self.ledger,
            executor=self.executor,
            cache=self.cache,
            watched_address=config.watched_address,
            batch_size=monitoring.batch_size
        )
        self.dispatcher = dispatcher or NotificationDispatcher(
            webhook_url=config.notification.webhook_url,
            timeout=config.notification.timeout_seconds,
            event_type="address_transfer" if config.watched_address else "token_transfer",
            verbose=config.verbose
        )

        self.cursor: ScanCursor | None = None
        self.state = MonitorState.IDLE
        self.is_running = False
        self._stop_requested = False
        self.shutdown_event = asyncio.Event()

        # Metrics tracking
        self.cycles_completed = 0
        self.cycles_failed = 0
        self.contract_failures = 0
        self.transfers_reported = 0

    @classmethod
    def from_env(
        cls,
        watched_address: str | None = None,
        verbose: bool | None = None
    ) -> "ScanOrchestrator":
        """
        Create an orchestrator from environment variables.

        Raises:
            ValueError: If the configuration is invalid
        """
        config = MonitorConfig.from_env(watched_address=watched_address, verbose=verbose)
        config.log_config()
        return cls(config)

    async def initialize(self) -> None:
        """
        Set the cursor to the current chain head and pre-build contract handles.

        Raises:
            InitializationError: If the chain height cannot be fetched
        """
        self.state = MonitorState.INITIALIZING

        try:
            height = await self.executor.execute(self.ledger.get_block_number, "fetch latest block")
        except Exception as e:
            self.state = MonitorState.STOPPED
            logger.error(f"Initialization failed: {e}")
            raise InitializationError(f"Could not fetch the latest block: {e}") from e

        self.cursor = ScanCursor(height)

        for contract in self.config.contracts:
            self.cache.get_or_create_handle(contract.address)

        logger.info(f"Monitor initialized at block {height}")
        logger.info(f"Monitoring {len(self.config.contracts)} token contract(s):")
        for contract in self.config.contracts:
            logger.info(f"  - {contract.name}: {contract.address}")

    async def run_cycle(self) -> list[TransferEvent]:
        """
        Run one polling cycle.

        Returns:
            Transfers reported during the cycle, in emission order

        Raises:
            Exception: If the chain height cannot be fetched after retries
        """
        if self.cursor is None:
            raise RuntimeError("Orchestrator must be initialized before polling")

        height = await self.executor.execute(self.ledger.get_block_number, "fetch latest block")
        from_block, to_block = self.cursor.next_range(height, self.config.monitoring.max_blocks_to_scan)

        if to_block <= self.cursor.last_processed_block:
            logger.debug(f"No new blocks (head {height}, processed {self.cursor.last_processed_block})")
            return []

        if from_block > self.cursor.last_processed_block + 1:
            logger.warning(
                f"Skipping blocks {self.cursor.last_processed_block + 1}-{from_block - 1} "
                f"(beyond the {self.config.monitoring.max_blocks_to_scan} block scan window)"
            )

        log = logger.info if self.config.verbose else logger.debug
        log(f"Scanning blocks {from_block} to {to_block}...")

        events: list[TransferEvent] = []
        contracts = self.config.contracts
        batch_size = self.config.monitoring.batch_size

        for start in range(0, len(contracts), batch_size):
            if self._stop_requested:
                logger.info(f"Stop requested, leaving blocks {from_block}-{to_block} unprocessed")
                return events

            batch = contracts[start:start + batch_size]
            results = await asyncio.gather(
                *(self._scan_contract(contract, from_block, to_block) for contract in batch)
            )
            for contract_events in results:
                for event in contract_events:
                    self._emit(event)
                    events.append(event)

        self.cursor.advance(to_block)
        self.cycles_completed += 1

        if self.cycles_completed % self.METRICS_LOG_INTERVAL == 0:
            self.log_metrics()

        return events

    async def _scan_contract(
        self,
        contract: ContractDescriptor,
        from_block: int,
        to_block: int
    ) -> list[TransferEvent]:
        """Scan one contract, containing any failure to that contract."""
        try:
            return await self.scanner.scan(contract, from_block, to_block)
        except Exception as e:
            self.contract_failures += 1
            logger.error(f"Failed to scan {contract.name} in blocks {from_block}-{to_block}: {e}")
            return []

    def _emit(self, event: TransferEvent) -> None:
        """Log a transfer and hand it to the dispatcher."""
        self.transfers_reported += 1
        self._log_transfer(event)
        self.dispatcher.dispatch(event)

    def _log_transfer(self, event: TransferEvent) -> None:
        match event.direction:
            case Direction.INCOMING:
                logger.info(f"Incoming {event.contract_name} transfer:")
                logger.info(f"  From: {event.from_address}")
            case Direction.OUTGOING:
                logger.info(f"Outgoing {event.contract_name} transfer:")
                logger.info(f"  To: {event.to_address}")
            case _:
                logger.info(f"{event.contract_name} transfer detected:")
                logger.info(f"  From: {event.from_address}")
                logger.info(f"  To: {event.to_address}")
        logger.info(f"  Amount: {event.human_amount} tokens")
        logger.info(f"  Block: {event.block_number}")
        logger.info(f"  Tx: {event.transaction_hash}")
        logger.info(f"  Time: {event.timestamp}")

    async def _sleep_interval(self) -> None:
        """Sleep for the poll interval, waking early if stop() is called."""
        try:
            await asyncio.wait_for(
                self.shutdown_event.wait(),
                timeout=self.config.monitoring.poll_interval_seconds
            )
        except asyncio.TimeoutError:
            pass  # Interval elapsed

    async def start(self) -> None:
        """
        Initialize and run the polling loop until stop() is called.

        Calling start() while the loop is already running does nothing. A stop()
        requested before start() makes it return without polling.

        Raises:
            InitializationError: If initialization fails
        """
        if self.is_running:
            logger.warning("Monitor already running")
            return

        if self._stop_requested:
            logger.info("Stop requested before start, not polling")
            self._reset_stop_request()
            self.state = MonitorState.STOPPED
            return

        self.is_running = True

        try:
            await self.initialize()

            self.state = MonitorState.POLLING
            logger.info(
                f"Starting transfer polling every {self.config.monitoring.poll_interval_ms} ms"
            )

            while not self._stop_requested:
                try:
                    await self.run_cycle()
                except Exception as e:
                    self.cycles_failed += 1
                    logger.error(f"Error in polling cycle: {e}", exc_info=True)

                if self._stop_requested:
                    break
                await self._sleep_interval()

        finally:
            self.is_running = False
            self._reset_stop_request()
            await self.dispatcher.drain(timeout=self.config.notification.timeout_seconds)
            self.state = MonitorState.STOPPED
            logger.info("Transfer monitor stopped")

    def _reset_stop_request(self) -> None:
        self._stop_requested = False
        self.shutdown_event.clear()

    def stop(self) -> None:
        """Request a cooperative stop; in-flight scans finish normally."""
        logger.info("Stopping transfer monitor...")
        self._stop_requested = True
        self.shutdown_event.set()
        if not self.is_running:
            self.state = MonitorState.STOPPED

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the monitor.

        Returns:
            Dictionary with status information
        """
        return {
            "state": self.state.value,
            "is_running": self.is_running,
            "last_processed_block": self.cursor.last_processed_block if self.cursor else None,
            "active_rpc": self.pool.current(),
            "watched_address": self.config.watched_address,
            "cycles_completed": self.cycles_completed,
            "cycles_failed": self.cycles_failed,
            "contract_failures": self.contract_failures,
            "transfers_reported": self.transfers_reported,
            "scanner": self.scanner.get_metrics(),
            "cache": self.cache.get_stats(),
            "notifications": self.dispatcher.get_metrics(),
        }

    def log_metrics(self) -> None:
        """Log current monitor metrics."""
        status = self.get_status()
        logger.info(
            f"Monitor Metrics: "
            f"Cycles={status['cycles_completed']} (failed {status['cycles_failed']}), "
            f"Transfers={status['transfers_reported']}, "
            f"ContractFailures={status['contract_failures']}, "
            f"DecodeFailures={status['scanner']['decode_failures']}, "
            f"Block={status['last_processed_block']}, "
            f"Cache={status['cache']['timestamps']}/{status['cache']['max_size']}, "
            f"Webhooks={status['notifications']['sent']} sent/{status['notifications']['failed']} failed"
        )
