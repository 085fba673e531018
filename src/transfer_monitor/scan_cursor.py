#!/usr/bin/env python3
"""Scan progress tracking for the transfer monitor.

The cursor holds the last block whose polling cycle has completed. It lives
in memory only; a restarted monitor starts again from the chain head.
"""


class ScanCursor:
    """Tracks the last processed block and derives the next scan window.

    The window never reaches further back than max_blocks_to_scan below the
    chain head. Blocks that fall out of the window after a long outage are
    skipped, not backfilled.

    The cursor is global across contracts: once a cycle has been attempted
    for every contract, its whole range counts as processed, including the
    part belonging to a contract whose scan failed.
    """

    def __init__(self, last_processed_block: int = 0) -> None:
        if last_processed_block < 0:
            raise ValueError(
                f"Last processed block must be non-negative, got {last_processed_block}"
            )
        self.last_processed_block = last_processed_block

    def next_range(self, current_height: int, max_blocks_to_scan: int) -> tuple[int, int]:
        """Compute the (from_block, to_block) window for the given chain height.

        When there are no new blocks from_block ends up greater than to_block.
        """
        if max_blocks_to_scan < 1:
            raise ValueError(f"max_blocks_to_scan must be positive, got {max_blocks_to_scan}")

        from_block = max(
            self.last_processed_block + 1,
            current_height - max_blocks_to_scan
        )
        return from_block, current_height

    def has_new_blocks(self, current_height: int) -> bool:
        return current_height > self.last_processed_block

    def advance(self, to_block: int) -> None:
        """Mark every block up to to_block as processed."""
        if to_block < self.last_processed_block:
            raise ValueError(
                f"Cursor cannot move backwards from {self.last_processed_block} to {to_block}"
            )
        self.last_processed_block = to_block

    def __repr__(self) -> str:
        return f"ScanCursor(last_processed_block={self.last_processed_block})"
