#!/usr/bin/env python3
"""Data models for the transfer monitor.

This module provides immutable data classes for the token contracts being
watched and the Transfer events observed on them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from web3 import Web3

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_SIGNATURE = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

BALANCE_OF_ABI: dict[str, Any] = {
    "inputs": [{"name": "account", "type": "address"}],
    "name": "balanceOf",
    "outputs": [{"name": "", "type": "uint256"}],
    "stateMutability": "view",
    "type": "function",
}

# uint256 max has 78 digits
MAX_DECIMALS = 77


class Direction(Enum):
    """Direction of a transfer relative to the watched address."""
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class ContractDescriptor:
    """A monitored ERC-20 token contract.

    Attributes:
        address: Checksummed contract address
        name: Display name used in logs and notifications
        decimals: Number of decimals of the token
    """

    address: str
    name: str
    decimals: int = 18

    def __post_init__(self) -> None:
        """Validate and checksum the contract address."""
        if not Web3.is_address(self.address):
            raise ValueError(f"Invalid contract address: {self.address}")

        checksummed = Web3.to_checksum_address(self.address)
        if checksummed != self.address:
            object.__setattr__(self, 'address', checksummed)

        if not self.name:
            raise ValueError(f"Contract {self.address} needs a display name")

        if not 0 <= self.decimals <= MAX_DECIMALS:
            raise ValueError(
                f"Decimals for {self.name} must be between 0 and {MAX_DECIMALS}, got {self.decimals}"
            )


@dataclass(frozen=True, slots=True)
class TransferEvent:
    """A decoded ERC-20 Transfer log.

    This immutable data class is produced once per matching log, handed to
    the log output and the notification dispatcher, then discarded.

    Attributes:
        contract_address: Token contract that emitted the log
        contract_name: Display name of the token
        from_address: Checksummed sender
        to_address: Checksummed recipient
        raw_value: Transferred amount in base units
        human_amount: raw_value scaled by the token decimals, as an exact decimal string
        direction: Direction relative to the watched address (NONE if unwatched)
        block_number: Block the log was emitted in
        transaction_hash: Hash of the emitting transaction (0x prefixed)
        timestamp: ISO-8601 UTC timestamp of the block
        log_index: Position of the log in the block, if reported by the node
    """

    contract_address: str
    contract_name: str
    from_address: str
    to_address: str
    raw_value: int
    human_amount: str
    direction: Direction
    block_number: int
    transaction_hash: str
    timestamp: str
    log_index: int | None = None

    def __post_init__(self) -> None:
        """Validate event fields."""
        for field_name in ('contract_address', 'from_address', 'to_address'):
            value = getattr(self, field_name)
            if not Web3.is_address(value):
                raise ValueError(f"Invalid {field_name}: {value}")

        if self.raw_value < 0:
            raise ValueError(f"Transfer value must be non-negative, got {self.raw_value}")

        if self.block_number < 0:
            raise ValueError(f"Block number must be non-negative, got {self.block_number}")

        if not self.transaction_hash.startswith('0x'):
            raise ValueError(f"Transaction hash must be 0x prefixed: {self.transaction_hash}")

        if not isinstance(self.direction, Direction):
            raise ValueError(f"Invalid direction: {self.direction!r}")

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"TransferEvent({self.contract_name}, "
            f"amount={self.human_amount}, "
            f"block={self.block_number}, "
            f"tx={self.transaction_hash[:10]}...)"
        )

    @property
    def unique_key(self) -> tuple[str, int | None]:
        """Key identifying the underlying log."""
        return (self.transaction_hash, self.log_index)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "contract_address": self.contract_address,
            "contract_name": self.contract_name,
            "from": self.from_address,
            "to": self.to_address,
            "value": str(self.raw_value),
            "amount": self.human_amount,
            "direction": self.direction.value,
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "timestamp": self.timestamp,
            "log_index": self.log_index,
        }


@dataclass(frozen=True, slots=True)
class BalanceResult:
    """Outcome of a balanceOf query for one token."""

    contract_name: str
    balance: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None
