#!/usr/bin/env python3
"""Shared fixtures for the transfer monitor tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from transfer_monitor.models import TRANSFER_EVENT_SIGNATURE, ContractDescriptor
from transfer_monitor.utils.aux_cache import AuxCache
from transfer_monitor.utils.endpoint_pool import RpcEndpointPool
from transfer_monitor.utils.retry_executor import RetryExecutor

WATCHED = "0x1234567890abcdef1234567890abcdef12345678"
ALICE = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
BOB = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"


def _pad(address: str) -> str:
    return '0x' + address[2:].lower().rjust(64, '0')


@pytest.fixture
def make_log():
    """Factory for Transfer logs in raw JSON-RPC form."""
    counter = iter(range(1, 10_000))

    def _make_log(
        block_number: int,
        sender: str = ALICE,
        recipient: str = BOB,
        value: int = 10 ** 18,
        tx_id: int | None = None,
        log_index: int = 0
    ) -> dict:
        tx_id = next(counter) if tx_id is None else tx_id
        return {
            'topics': [TRANSFER_EVENT_SIGNATURE, _pad(sender), _pad(recipient)],
            'data': '0x' + format(value, '064x'),
            'blockNumber': block_number,
            'transactionHash': '0x' + format(tx_id, '064x'),
            'logIndex': log_index,
        }

    return _make_log


@pytest.fixture
def token():
    return ContractDescriptor(
        address="0xa56f72b634ea2d74bd9cf6fcd44aa970871d4c25",
        name="Test Token",
        decimals=18
    )


@pytest.fixture
def pool():
    return RpcEndpointPool(["http://primary.rpc", "http://backup.rpc"])


@pytest.fixture
def executor(pool):
    """Retry executor without backoff delays."""
    return RetryExecutor(pool, max_attempts=3, base_delay=0)


@pytest.fixture
def ledger():
    """Ledger client double with async RPC methods."""
    mock = MagicMock()
    mock.get_block_number = AsyncMock(return_value=1000)
    mock.get_logs = AsyncMock(return_value=[])
    mock.get_block_timestamp = AsyncMock(return_value=1_700_000_000)
    mock.call_contract_method = AsyncMock()
    mock.contract = MagicMock(side_effect=lambda address, abi: MagicMock(address=address))
    return mock


@pytest.fixture
def cache(ledger, executor):
    return AuxCache(ledger, executor, max_size=100)
