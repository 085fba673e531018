#!/usr/bin/env python3
"""Token balance queries for the watched address."""

import asyncio
import logging

from web3 import Web3

from .models import BalanceResult, ContractDescriptor
from .utils.aux_cache import AuxCache
from .utils.decoding import format_units
from .utils.ledger_client import LedgerClient
from .utils.retry_executor import RetryExecutor

logger = logging.getLogger(__name__)


class BalanceReporter:
    """Queries balanceOf on every configured token for one account."""

    def __init__(
        self,
        ledger: LedgerClient,
        executor: RetryExecutor,
        cache: AuxCache,
        contracts: tuple[ContractDescriptor, ...]
    ) -> None:
        self.ledger = ledger
        self.executor = executor
        self.cache = cache
        self.contracts = contracts

    async def get_balance(self, contract: ContractDescriptor, address: str) -> BalanceResult:
        """
        Query one token balance. Errors are captured in the result.

        Args:
            contract: Token to query
            address: Account whose balance is read

        Returns:
            BalanceResult with either the formatted balance or the error message
        """
        try:
            handle = self.cache.get_or_create_handle(contract.address)
            raw_balance = await self.executor.execute(
                lambda: self.ledger.call_contract_method(handle, "balanceOf", address),
                f"query {contract.name} balance"
            )
            return BalanceResult(
                contract_name=contract.name,
                balance=format_units(int(raw_balance), contract.decimals)
            )
        except Exception as e:
            return BalanceResult(contract_name=contract.name, error=str(e))

    async def get_balances(self, address: str) -> list[BalanceResult]:
        """Query every configured token concurrently, in configuration order."""
        address = Web3.to_checksum_address(address)
        return list(await asyncio.gather(
            *(self.get_balance(contract, address) for contract in self.contracts)
        ))

    async def log_balances(self, address: str) -> list[BalanceResult]:
        """Query and log the balances of an address."""
        logger.info(f"Token balances of {address}:")
        results = await self.get_balances(address)
        for result in results:
            if result.success:
                logger.info(f"  {result.contract_name}: {result.balance} tokens")
            else:
                logger.warning(f"  {result.contract_name}: query failed ({result.error})")
        return results
