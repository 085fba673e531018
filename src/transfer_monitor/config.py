#!/usr/bin/env python3
"""Configuration management for the transfer monitor.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
and passed explicitly to every component at startup.
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

from .models import ContractDescriptor

# Get logger for this module
logger = logging.getLogger(__name__)


DEFAULT_CONTRACTS: tuple[ContractDescriptor, ...] = (
    ContractDescriptor(
        address="0xa56f72b634ea2d74bd9cf6fcd44aa970871d4c25",
        name="TRUMP Token",
        decimals=18,
    ),
    ContractDescriptor(
        address="0x263396432fd5a10e4c740d800c9e87986c00eec6",
        name="TRUMP COIN",
        decimals=18,
    ),
    ContractDescriptor(
        address="0x930305027ac48834a6dabe88514d4e38355105c6",
        name="TrumpCoin Legacy",
        decimals=8,
    ),
    ContractDescriptor(
        address="0x7c84d7e3829e004a49204d650883697bc7f06748",
        name="TrumpMeme",
        decimals=18,
    ),
)

MIN_POLL_INTERVAL_MS = 1000
MAX_BLOCKS_TO_SCAN_LIMIT = 1000


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to default when unset or empty."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _validate_url(url: str, label: str, schemes: tuple[str, ...]) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in schemes:
        raise ValueError(
            f"Invalid {label} scheme: {parsed.scheme or '(none)'}. "
            f"Expected {', '.join(schemes)}"
        )


@dataclass(frozen=True, slots=True)
class RpcConfig:
    """Configuration for the RPC endpoints.

    Attributes:
        rpc_url: Primary HTTP(S) RPC endpoint
        backup_rpc_urls: Endpoints to fail over to, in order
        connection_timeout_ms: Per-call RPC timeout in milliseconds
    """

    rpc_url: str
    backup_rpc_urls: tuple[str, ...] = ()
    connection_timeout_ms: int = 30000

    def __post_init__(self) -> None:
        """Validate RPC configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (ETHEREUM_RPC_URL)")

        for url in (self.rpc_url, *self.backup_rpc_urls):
            _validate_url(url, "RPC URL", ('http', 'https', 'ws', 'wss'))

        if self.connection_timeout_ms <= 0:
            raise ValueError(
                f"Connection timeout must be positive, got {self.connection_timeout_ms}"
            )

    @property
    def endpoints(self) -> list[str]:
        """Primary endpoint followed by the backups."""
        return [self.rpc_url, *self.backup_rpc_urls]

    @property
    def timeout_seconds(self) -> float:
        return self.connection_timeout_ms / 1000


@dataclass(frozen=True, slots=True)
class MonitoringConfig:
    """Configuration for polling, retries and fan-out."""
    poll_interval_ms: int = 5000  # delay between polling cycles
    max_blocks_to_scan: int = 100  # widest block window per cycle
    retry_attempts: int = 3  # attempts per RPC call
    retry_delay_ms: int = 1000  # base delay for linear backoff
    batch_size: int = 10  # concurrent contract scans / log decodes
    cache_size: int = 100  # entries per auxiliary cache

    def __post_init__(self) -> None:
        """Validate monitoring configuration."""
        if self.poll_interval_ms < MIN_POLL_INTERVAL_MS:
            raise ValueError(
                f"Poll interval must be at least {MIN_POLL_INTERVAL_MS}ms, got {self.poll_interval_ms}"
            )

        if not 1 <= self.max_blocks_to_scan <= MAX_BLOCKS_TO_SCAN_LIMIT:
            raise ValueError(
                f"Max blocks to scan must be between 1 and {MAX_BLOCKS_TO_SCAN_LIMIT}, "
                f"got {self.max_blocks_to_scan}"
            )

        if self.retry_attempts < 1:
            raise ValueError(f"Retry attempts must be at least 1, got {self.retry_attempts}")
        if self.retry_attempts > 10:
            raise ValueError(f"Retry attempts too high (max 10), got {self.retry_attempts}")

        if self.retry_delay_ms < 0:
            raise ValueError(f"Retry delay must be non-negative, got {self.retry_delay_ms}")

        if not 1 <= self.batch_size <= 100:
            raise ValueError(f"Batch size must be between 1 and 100, got {self.batch_size}")

        if self.cache_size < 1:
            raise ValueError(f"Cache size must be positive, got {self.cache_size}")

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000


@dataclass(frozen=True, slots=True)
class NotificationConfig:
    """Configuration for the outbound webhook.

    Attributes:
        webhook_url: Endpoint receiving transfer notifications (None disables them)
        webhook_timeout_ms: Timeout for a single delivery in milliseconds
    """

    webhook_url: str | None = None
    webhook_timeout_ms: int = 5000

    def __post_init__(self) -> None:
        """Validate notification configuration."""
        if self.webhook_url:
            _validate_url(self.webhook_url, "webhook URL", ('http', 'https'))

        if self.webhook_timeout_ms <= 0:
            raise ValueError(
                f"Webhook timeout must be positive, got {self.webhook_timeout_ms}"
            )

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    @property
    def timeout_seconds(self) -> float:
        return self.webhook_timeout_ms / 1000


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """Main configuration for the transfer monitor.

    Attributes:
        rpc: RPC endpoint configuration
        monitoring: Polling and resilience settings
        notification: Webhook settings
        contracts: Token contracts to watch
        watched_address: Single account whose transfers are labelled by direction
        verbose: Whether to log per-cycle details at INFO level
    """

    rpc: RpcConfig
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    contracts: tuple[ContractDescriptor, ...] = DEFAULT_CONTRACTS
    watched_address: str | None = None
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate monitor configuration."""
        if not self.contracts:
            raise ValueError("At least one token contract must be configured")

        if self.watched_address is not None:
            if not Web3.is_address(self.watched_address):
                raise ValueError(f"Invalid watched address: {self.watched_address}")
            checksummed = Web3.to_checksum_address(self.watched_address)
            if checksummed != self.watched_address:
                object.__setattr__(self, 'watched_address', checksummed)

    @classmethod
    def from_env(
        cls,
        watched_address: str | None = None,
        verbose: bool | None = None
    ) -> "MonitorConfig":
        """Load configuration from environment variables.

        Args:
            watched_address: Optional account to watch (from the command line)
            verbose: Overrides ENABLE_DETAILED_LOGS when given

        Returns:
            MonitorConfig instance with loaded values

        Raises:
            ValueError: If environment variables are invalid
        """
        rpc_url = os.environ.get("ETHEREUM_RPC_URL") or "https://eth.llamarpc.com"
        backups = tuple(
            url.strip()
            for url in os.environ.get("BACKUP_RPC_URLS", "").split(",")
            if url.strip()
        )

        rpc_config = RpcConfig(
            rpc_url=rpc_url,
            backup_rpc_urls=backups,
            connection_timeout_ms=_env_int("CONNECTION_TIMEOUT_MS", 30000)
        )

        # Floor and clamp the polling settings rather than rejecting them
        poll_interval_ms = max(MIN_POLL_INTERVAL_MS, _env_int("POLL_INTERVAL_MS", 5000))
        max_blocks = min(MAX_BLOCKS_TO_SCAN_LIMIT, max(1, _env_int("MAX_BLOCKS_TO_SCAN", 100)))

        monitoring_config = MonitoringConfig(
            poll_interval_ms=poll_interval_ms,
            max_blocks_to_scan=max_blocks,
            retry_attempts=_env_int("RETRY_ATTEMPTS", 3),
            retry_delay_ms=_env_int("RETRY_DELAY_MS", 1000),
            batch_size=_env_int("BATCH_SIZE", 10),
            cache_size=_env_int("AUX_CACHE_SIZE", 100)
        )

        notification_config = NotificationConfig(
            webhook_url=os.environ.get("WEBHOOK_URL") or None,
            webhook_timeout_ms=_env_int("WEBHOOK_TIMEOUT_MS", 5000)
        )

        if verbose is None:
            verbose = os.environ.get("ENABLE_DETAILED_LOGS", "").lower() == "true"

        return cls(
            rpc=rpc_config,
            monitoring=monitoring_config,
            notification=notification_config,
            watched_address=watched_address,
            verbose=verbose
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Transfer Monitor Configuration")
        logger.info("=" * 60)

        logger.info("RPC:")
        logger.info(f"  Primary: {self.rpc.rpc_url}")
        for backup in self.rpc.backup_rpc_urls:
            logger.info(f"  Backup: {backup}")
        logger.info(f"  Timeout: {self.rpc.connection_timeout_ms} ms")

        logger.info("Monitoring Settings:")
        logger.info(f"  Poll Interval: {self.monitoring.poll_interval_ms} ms")
        logger.info(f"  Max Blocks Per Scan: {self.monitoring.max_blocks_to_scan}")
        logger.info(f"  Retry Attempts: {self.monitoring.retry_attempts}")
        logger.info(f"  Retry Delay: {self.monitoring.retry_delay_ms} ms")
        logger.info(f"  Batch Size: {self.monitoring.batch_size}")

        logger.info("Notifications:")
        if self.notification.enabled:
            logger.info(f"  Webhook: {self.notification.webhook_url}")
            logger.info(f"  Timeout: {self.notification.webhook_timeout_ms} ms")
        else:
            logger.info("  Webhook: [DISABLED]")

        logger.info(f"Contracts ({len(self.contracts)}):")
        for contract in self.contracts:
            logger.info(f"  {contract.name}: {contract.address}")

        logger.info(f"Mode: {'ADDRESS ' + self.watched_address if self.watched_address else 'ALL TRANSFERS'}")
        logger.info("=" * 60)
