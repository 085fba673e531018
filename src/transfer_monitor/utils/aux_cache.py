"""
Bounded caches for block timestamps and contract handles.

Both caches evict in insertion order (FIFO) once they grow past their bound.
Cached values never change: a block's timestamp is fixed for a given number.
"""

import logging
from collections import OrderedDict
from collections.abc import Hashable
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from web3.contract import AsyncContract

from ..models import BALANCE_OF_ABI
from .ledger_client import LedgerClient
from .retry_executor import RetryExecutor

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

logger = logging.getLogger(__name__)


class BoundedCache(Generic[K, V]):
    """
    Mapping with a maximum size and oldest-insertion-first eviction.

    Lookups do not refresh an entry's position, unlike an LRU.
    """

    def __init__(self, max_size: int = 100) -> None:
        if max_size < 1:
            raise ValueError(f"Cache size must be positive, got {max_size}")
        self.max_size = max_size
        self._entries: OrderedDict[K, V] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: K) -> V | None:
        value = self._entries.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def put(self, key: K, value: V) -> V:
        """
        Store a value unless the key is already cached.

        Returns:
            The value held in the cache for key
        """
        if key in self._entries:
            return self._entries[key]

        self._entries[key] = value

        # Evict oldest while over limit
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry {evicted!r}")

        return value

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[K]:
        return list(self._entries.keys())


def format_timestamp(unix_seconds: int) -> str:
    """Render a Unix timestamp as ISO-8601 UTC with a Z suffix."""
    moment = datetime.fromtimestamp(unix_seconds, tz=timezone.utc)
    return moment.strftime('%Y-%m-%dT%H:%M:%SZ')


class AuxCache:
    """
    Caches the auxiliary lookups made while scanning.

    Misses go to the ledger through the retry executor.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        executor: RetryExecutor,
        max_size: int = 100
    ) -> None:
        """
        Initialize the caches.

        Args:
            ledger: Client used to fetch blocks and build contract handles
            executor: Retry executor wrapping every RPC call
            max_size: Bound for each of the two caches
        """
        self.ledger = ledger
        self.executor = executor
        self.timestamps: BoundedCache[int, str] = BoundedCache(max_size)
        self.handles: BoundedCache[str, AsyncContract] = BoundedCache(max_size)

    async def get_timestamp(self, block_number: int) -> str:
        """
        Return the ISO-8601 timestamp of a block.

        Args:
            block_number: Block to look up

        Returns:
            Timestamp string such as 2024-01-01T00:00:00Z
        """
        if (cached := self.timestamps.get(block_number)) is not None:
            return cached

        unix_seconds = await self.executor.execute(
            lambda: self.ledger.get_block_timestamp(block_number),
            f"fetch block {block_number}"
        )
        return self.timestamps.put(block_number, format_timestamp(unix_seconds))

    def get_or_create_handle(self, address: str) -> AsyncContract:
        """Return the balanceOf binding for a token contract, building it on first use."""
        key = address.lower()
        if (cached := self.handles.get(key)) is not None:
            return cached

        handle = self.ledger.contract(address, [BALANCE_OF_ABI])
        return self.handles.put(key, handle)

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache sizes and hit counters
        """
        return {
            'timestamps': len(self.timestamps),
            'timestamp_hits': self.timestamps.hits,
            'timestamp_misses': self.timestamps.misses,
            'handles': len(self.handles),
            'max_size': self.timestamps.max_size,
        }
