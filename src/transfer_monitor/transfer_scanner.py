#!/usr/bin/env python3
"""Transfer log scanning for the transfer monitor.

This module fetches the Transfer logs of one token contract over a block
range, then decodes, deduplicates and orders them into TransferEvent objects.
"""

import asyncio
import logging
from typing import Any

from web3 import Web3

from .models import TRANSFER_EVENT_SIGNATURE, ContractDescriptor, Direction, TransferEvent
from .utils.aux_cache import AuxCache
from .utils.decoding import (
    TransferDecodeError,
    decode_transfer,
    format_units,
    pad_address,
    parse_block_number,
    to_hex,
)
from .utils.ledger_client import LedgerClient
from .utils.retry_executor import RetryExecutor

# Get logger for this module
logger = logging.getLogger(__name__)


class TransferScanner:
    """Scans token contracts for Transfer events.

    This class is responsible for:
    - Querying Transfer logs (directional queries when an address is watched)
    - Dropping logs returned by both directional queries
    - Ordering logs by block number
    - Decoding logs into TransferEvent objects in bounded concurrent batches
    - Containing decode failures to the offending log
    """

    def __init__(
        self,
        ledger: LedgerClient,
        executor: RetryExecutor,
        cache: AuxCache,
        watched_address: str | None = None,
        batch_size: int = 10
    ) -> None:
        """Initialize the TransferScanner.

        Args:
            ledger: Client used for log queries
            executor: Retry executor wrapping every RPC call
            cache: Timestamp cache used to enrich events
            watched_address: Account whose transfers are labelled by direction
            batch_size: Maximum number of logs decoded concurrently
        """
        if batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {batch_size}")

        self.ledger = ledger
        self.executor = executor
        self.cache = cache
        self.watched_address = (
            Web3.to_checksum_address(watched_address) if watched_address else None
        )
        self.batch_size = batch_size

        # Metrics tracking
        self.logs_seen = 0
        self.events_emitted = 0
        self.decode_failures = 0

    async def scan(
        self,
        contract: ContractDescriptor,
        from_block: int,
        to_block: int
    ) -> list[TransferEvent]:
        """Scan one contract for Transfer events in an inclusive block range.

        Args:
            contract: Token contract to scan
            from_block: First block of the range
            to_block: Last block of the range

        Returns:
            Events sorted by ascending block number

        Raises:
            Exception: If a log query still fails after retries
        """
        logs = await self._fetch_logs(contract, from_block, to_block)
        logs = self._order_logs(self._dedupe_logs(logs), contract)
        self.logs_seen += len(logs)

        if not logs:
            return []

        logger.info(f"Found {len(logs)} {contract.name} transfer log(s) in blocks {from_block}-{to_block}")

        events: list[TransferEvent] = []
        for start in range(0, len(logs), self.batch_size):
            batch = logs[start:start + self.batch_size]
            # gather preserves input order, so events stay sorted
            results = await asyncio.gather(
                *(self._process_log(log, contract) for log in batch)
            )
            events.extend(event for event in results if event is not None)

        self.events_emitted += len(events)
        return events

    async def _fetch_logs(
        self,
        contract: ContractDescriptor,
        from_block: int,
        to_block: int
    ) -> list[Any]:
        """Run the log queries for one contract."""
        if self.watched_address:
            padded = pad_address(self.watched_address)
            incoming, outgoing = await asyncio.gather(
                self.executor.execute(
                    lambda: self.ledger.get_logs(
                        contract.address, [TRANSFER_EVENT_SIGNATURE, None, padded], from_block, to_block
                    ),
                    f"fetch incoming {contract.name} transfers"
                ),
                self.executor.execute(
                    lambda: self.ledger.get_logs(
                        contract.address, [TRANSFER_EVENT_SIGNATURE, padded, None], from_block, to_block
                    ),
                    f"fetch outgoing {contract.name} transfers"
                ),
            )
            return [*incoming, *outgoing]

        return await self.executor.execute(
            lambda: self.ledger.get_logs(
                contract.address, [TRANSFER_EVENT_SIGNATURE], from_block, to_block
            ),
            f"fetch {contract.name} transfers"
        )

    def _dedupe_logs(self, logs: list[Any]) -> list[Any]:
        """Drop repeated logs, keeping the first occurrence.

        A transfer from the watched address to itself matches both
        directional queries.
        """
        seen: set[tuple[str, Any]] = set()
        unique: list[Any] = []
        for log in logs:
            key = self._log_key(log)
            if key is not None:
                if key in seen:
                    continue
                seen.add(key)
            unique.append(log)
        return unique

    @staticmethod
    def _log_key(log: Any) -> tuple[str, Any] | None:
        """Identify a log by transaction hash and log index, if both are present."""
        if not hasattr(log, 'get'):
            return None
        tx_hash = log.get('transactionHash')
        log_index = log.get('logIndex')
        if tx_hash is None or log_index is None:
            return None
        try:
            return (to_hex(tx_hash), log_index)
        except TransferDecodeError:
            return None

    def _order_logs(self, logs: list[Any], contract: ContractDescriptor) -> list[Any]:
        """Stable-sort logs by block number, dropping logs without a usable one."""
        keyed: list[tuple[int, Any]] = []
        for log in logs:
            try:
                block_number = parse_block_number(log.get('blockNumber') if hasattr(log, 'get') else None)
            except TransferDecodeError as e:
                self.decode_failures += 1
                logger.error(f"Skipping {contract.name} log without a valid block number: {e}")
                continue
            keyed.append((block_number, log))

        keyed.sort(key=lambda item: item[0])
        return [log for _, log in keyed]

    async def _process_log(self, log: Any, contract: ContractDescriptor) -> TransferEvent | None:
        """Turn one log into a TransferEvent.

        Failures are logged and yield None so the rest of the batch continues.
        """
        try:
            sender, recipient, raw_value = decode_transfer(log)
            block_number = parse_block_number(log.get('blockNumber'))
            tx_hash = to_hex(log.get('transactionHash') or '')
            if len(tx_hash) != 66:
                raise TransferDecodeError(f"Invalid transaction hash: {tx_hash}")

            log_index = log.get('logIndex')
            timestamp = await self.cache.get_timestamp(block_number)

            return TransferEvent(
                contract_address=contract.address,
                contract_name=contract.name,
                from_address=sender,
                to_address=recipient,
                raw_value=raw_value,
                human_amount=format_units(raw_value, contract.decimals),
                direction=self._direction(sender, recipient),
                block_number=block_number,
                transaction_hash=tx_hash,
                timestamp=timestamp,
                log_index=int(log_index) if log_index is not None else None
            )

        except Exception as e:
            self.decode_failures += 1
            logger.error(f"Failed to process {contract.name} transfer log: {e}")
            return None

    def _direction(self, sender: str, recipient: str) -> Direction:
        if not self.watched_address:
            return Direction.NONE
        if recipient == self.watched_address:
            return Direction.INCOMING
        if sender == self.watched_address:
            return Direction.OUTGOING
        return Direction.NONE

    def get_metrics(self) -> dict[str, int]:
        """Get current scanning metrics.

        Returns:
            Dictionary of metric names to values
        """
        return {
            "logs_seen": self.logs_seen,
            "events_emitted": self.events_emitted,
            "decode_failures": self.decode_failures,
        }
