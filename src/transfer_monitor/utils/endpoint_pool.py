"""
Ordered pool of RPC endpoints with circular failover.
"""

import logging

logger = logging.getLogger(__name__)


class RpcEndpointPool:
    """
    Holds the primary RPC endpoint followed by its backups.

    The active index only moves through rotate(), which wraps around to the
    primary after the last backup.
    """

    def __init__(self, endpoints: list[str]) -> None:
        """
        Initialize the pool.

        Args:
            endpoints: Endpoint URLs, primary first. Blanks and duplicates are dropped.
        """
        unique: list[str] = []
        for url in endpoints:
            url = url.strip() if url else ""
            if url and url not in unique:
                unique.append(url)

        if not unique:
            raise ValueError("At least one RPC endpoint is required")

        self._endpoints: tuple[str, ...] = tuple(unique)
        self.active_index = 0

    def current(self) -> str:
        """Return the active endpoint."""
        return self._endpoints[self.active_index]

    def rotate(self) -> str:
        """Advance to the next endpoint and return it."""
        if len(self._endpoints) == 1:
            return self._endpoints[0]

        self.active_index = (self.active_index + 1) % len(self._endpoints)
        endpoint = self._endpoints[self.active_index]
        logger.warning(
            f"Switched to RPC endpoint {self.active_index + 1}/{len(self._endpoints)}: {endpoint}"
        )
        return endpoint

    def size(self) -> int:
        return len(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints
