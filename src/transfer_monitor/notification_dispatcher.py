#!/usr/bin/env python3
"""Webhook notifications for observed transfers.

Delivery is best effort: one POST per event, never retried, and never
allowed to raise into or hold up the scan loop.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from .models import TransferEvent

logger = logging.getLogger(__name__)

USER_AGENT = "TransferMonitor/1.0"


class NotificationDispatcher:
    """Posts transfer events to a webhook as detached tasks.

    The caller never awaits a delivery. Each task logs its own outcome, and
    the set of pending tasks is bounded so a slow webhook cannot pile up
    unbounded work.
    """

    def __init__(
        self,
        webhook_url: str | None,
        timeout: float = 5.0,
        event_type: str = "token_transfer",
        max_pending: int = 100,
        verbose: bool = False,
        transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        """Initialize the dispatcher.

        Args:
            webhook_url: Endpoint to POST to; None disables dispatching
            timeout: Timeout in seconds for a single delivery
            event_type: Value of the "type" field of every payload
            max_pending: Maximum number of deliveries in flight
            verbose: Log successful deliveries at INFO instead of DEBUG
            transport: Optional httpx transport (used by tests)
        """
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.event_type = event_type
        self.max_pending = max_pending
        self.verbose = verbose
        self.transport = transport

        self._pending: set[asyncio.Task[bool]] = set()

        # Metrics tracking
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def build_payload(self, event: TransferEvent) -> dict[str, Any]:
        """Build the JSON body for one event."""
        return {
            "type": self.event_type,
            "data": event.to_dict(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    def dispatch(self, event: TransferEvent) -> None:
        """Schedule delivery of an event and return immediately.

        Must be called from within a running event loop.
        """
        url = self.webhook_url
        if not url:
            return

        if len(self._pending) >= self.max_pending:
            self.dropped += 1
            logger.warning(
                f"Dropping notification for {event.transaction_hash}: "
                f"{len(self._pending)} deliveries already pending"
            )
            return

        task = asyncio.create_task(self._post(url, self.build_payload(event)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, url: str, payload: dict[str, Any]) -> bool:
        """POST one payload. Failures are logged and reported as False."""
        tx_hash = payload["data"].get("transaction_hash")

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response: httpx.Response = await client.post(
                    url,
                    json=payload,
                    headers={"User-Agent": USER_AGENT}
                )
        except httpx.TimeoutException as e:
            self.failed += 1
            logger.error(f"Webhook timed out for {tx_hash}: {e}")
            return False
        except httpx.HTTPError as e:
            self.failed += 1
            logger.error(f"Webhook delivery failed for {tx_hash}: {e}")
            return False
        except Exception as e:
            self.failed += 1
            logger.error(f"Unexpected webhook error for {tx_hash}: {e}", exc_info=True)
            return False

        if not response.is_success:
            self.failed += 1
            logger.error(f"Webhook rejected {tx_hash} with status {response.status_code}")
            return False

        self.sent += 1
        log = logger.info if self.verbose else logger.debug
        log(f"Webhook delivered {tx_hash}: {response.status_code}")
        return True

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for pending deliveries, cancelling any still running after timeout."""
        if not self._pending:
            return

        pending = set(self._pending)
        logger.info(f"Waiting for {len(pending)} pending notification(s)...")
        _, still_running = await asyncio.wait(pending, timeout=timeout)

        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} notification(s) still in flight")

    def get_metrics(self) -> dict[str, int]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "dropped": self.dropped,
            "pending": len(self._pending),
        }
