import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.types import FilterParams, LogReceipt

from .endpoint_pool import RpcEndpointPool

T = TypeVar("T")

logger = logging.getLogger(__name__)


class LedgerClient:
    """
    Read-only access to the chain through the pool's active endpoint.

    A single AsyncWeb3 instance is kept for the lifetime of the client. Each
    call first checks the pool and swaps the provider when the active
    endpoint has changed, so contract handles built from this client follow
    failover without being rebuilt.
    """

    def __init__(self, pool: RpcEndpointPool, request_timeout: float = 30.0) -> None:
        """
        Initialize the LedgerClient.

        Args:
            pool: Endpoint pool shared with the retry executor
            request_timeout: Timeout in seconds for a single RPC call
        """
        if request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {request_timeout}")

        self.pool = pool
        self.request_timeout = request_timeout
        self.active_url = pool.current()
        self.w3 = AsyncWeb3(self._make_provider(self.active_url))

    @staticmethod
    def _make_provider(url: str) -> AsyncHTTPProvider:
        # Retries are owned by RetryExecutor, not by the provider
        return AsyncHTTPProvider(url, exception_retry_configuration=None)

    def _sync_endpoint(self) -> None:
        """Point the web3 instance at the pool's current endpoint."""
        url = self.pool.current()
        if url != self.active_url:
            logger.info(f"RPC provider switched from {self.active_url} to {url}")
            self.w3.provider = self._make_provider(url)
            self.active_url = url

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.request_timeout)

    async def get_block_number(self) -> int:
        """Return the current chain height."""
        self._sync_endpoint()
        return int(await self._call(self.w3.eth.block_number))

    async def get_logs(
        self,
        address: str,
        topics: list[str | None],
        from_block: int,
        to_block: int
    ) -> list[LogReceipt]:
        """
        Fetch logs emitted by a contract in an inclusive block range.

        Args:
            address: Contract address
            topics: Topic filter; None matches any value in that position
            from_block: First block of the range
            to_block: Last block of the range

        Returns:
            Logs as returned by the node
        """
        self._sync_endpoint()
        filter_params: FilterParams = {
            'address': Web3.to_checksum_address(address),
            'topics': topics,
            'fromBlock': from_block,
            'toBlock': to_block,
        }
        logs = await self._call(self.w3.eth.get_logs(filter_params))
        return list(logs)

    async def get_block_timestamp(self, block_number: int) -> int:
        """Return the Unix timestamp of a block."""
        self._sync_endpoint()
        block = await self._call(self.w3.eth.get_block(block_number))
        timestamp = block.get('timestamp') if block is not None else None
        if timestamp is None:
            raise ValueError(f"Block {block_number} has no timestamp")
        return int(timestamp)

    def contract(self, address: str, abi: list[dict[str, Any]]) -> AsyncContract:
        """Build a read-only contract binding."""
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def call_contract_method(self, handle: AsyncContract, method: str, *args: Any) -> Any:
        """
        Call a view method on a contract handle built by this client.

        Args:
            handle: Contract binding from contract()
            method: Name of the ABI function
            *args: Positional call arguments

        Returns:
            Decoded call result
        """
        self._sync_endpoint()
        function = getattr(handle.functions, method)
        return await self._call(function(*args).call())
