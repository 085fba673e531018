"""
Transfer monitor package.

Polling monitor for ERC-20 Transfer events with webhook notifications.
"""

from .config import MonitorConfig
from .models import ContractDescriptor, Direction, TransferEvent
from .orchestrator import InitializationError, ScanOrchestrator

__all__ = [
    "MonitorConfig",
    "ScanOrchestrator",
    "InitializationError",
    "ContractDescriptor",
    "Direction",
    "TransferEvent",
]
__version__ = "0.1.0"
