#!/usr/bin/env python3
"""Unit tests for the ScanOrchestrator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from transfer_monitor.config import MonitorConfig, MonitoringConfig, RpcConfig
from transfer_monitor.models import ContractDescriptor, Direction
from transfer_monitor.notification_dispatcher import NotificationDispatcher
from transfer_monitor.orchestrator import InitializationError, MonitorState, ScanOrchestrator

from conftest import WATCHED

TOKEN_X = ContractDescriptor(address="0x" + "11" * 20, name="Token X", decimals=18)
TOKEN_Y = ContractDescriptor(address="0x" + "22" * 20, name="Token Y", decimals=6)
TOKEN_Z = ContractDescriptor(address="0x" + "33" * 20, name="Token Z", decimals=8)


def make_config(batch_size: int = 10, watched_address: str | None = None) -> MonitorConfig:
    return MonitorConfig(
        rpc=RpcConfig(rpc_url="http://primary.rpc", backup_rpc_urls=("http://backup.rpc",)),
        monitoring=MonitoringConfig(
            poll_interval_ms=1000,
            max_blocks_to_scan=100,
            retry_attempts=3,
            retry_delay_ms=0,
            batch_size=batch_size
        ),
        contracts=(TOKEN_X, TOKEN_Y, TOKEN_Z),
        watched_address=watched_address
    )


@pytest.fixture
def dispatcher():
    mock = MagicMock(spec=NotificationDispatcher)
    mock.get_metrics.return_value = {"sent": 0, "failed": 0, "dropped": 0, "pending": 0}
    return mock


@pytest.fixture
def monitor(ledger, dispatcher):
    return ScanOrchestrator(make_config(), ledger=ledger, dispatcher=dispatcher)


def logs_by_contract(make_log, failing: set[str] | None = None):
    """get_logs double returning one log per contract, failing for some."""
    failing = {address.lower() for address in (failing or set())}

    async def _get_logs(address, topics, from_block, to_block):
        if address.lower() in failing:
            raise ConnectionError(f"rpc error for {address}")
        return [make_log(to_block, tx_id=int(address[2:4], 16))]

    return _get_logs


class TestInitialization:
    """Tests for the Initializing state."""

    @pytest.mark.asyncio
    async def test_initialize_sets_cursor_to_head(self, monitor, ledger):
        ledger.get_block_number.return_value = 5000

        await monitor.initialize()

        assert monitor.cursor.last_processed_block == 5000
        assert monitor.state == MonitorState.INITIALIZING
        # Handles are pre-built for every contract
        assert ledger.contract.call_count == 3
        ledger.get_logs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_initialize_failure_is_fatal(self, monitor, ledger):
        ledger.get_block_number = AsyncMock(side_effect=ConnectionError("no route"))

        with pytest.raises(InitializationError, match="no route"):
            await monitor.initialize()

        assert ledger.get_block_number.await_count == 3
        assert monitor.state == MonitorState.STOPPED
        assert monitor.cursor is None

    @pytest.mark.asyncio
    async def test_start_with_failed_initialization(self, monitor, ledger, dispatcher):
        ledger.get_block_number = AsyncMock(side_effect=ConnectionError("no route"))

        with pytest.raises(InitializationError):
            await monitor.start()

        assert monitor.state == MonitorState.STOPPED
        assert not monitor.is_running
        ledger.get_logs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_cycle_requires_initialization(self, monitor):
        with pytest.raises(RuntimeError, match="initialized"):
            await monitor.run_cycle()


class TestPollingCycle:
    """Tests for a single polling cycle."""

    @pytest.mark.asyncio
    async def test_cycle_scans_new_range_and_advances(self, monitor, ledger, dispatcher, make_log):
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        ledger.get_block_number.return_value = 1010
        ledger.get_logs = AsyncMock(side_effect=logs_by_contract(make_log))

        events = await monitor.run_cycle()

        ranges = {(call.args[2], call.args[3]) for call in ledger.get_logs.await_args_list}
        assert ranges == {(1001, 1010)}
        assert monitor.cursor.last_processed_block == 1010
        assert [e.contract_name for e in events] == ["Token X", "Token Y", "Token Z"]
        assert dispatcher.dispatch.call_count == 3
        assert [c.args[0] for c in dispatcher.dispatch.call_args_list] == events

    @pytest.mark.asyncio
    async def test_no_new_blocks_skips_scan(self, monitor, ledger):
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        assert await monitor.run_cycle() == []

        ledger.get_logs.assert_not_awaited()
        assert monitor.cursor.last_processed_block == 1000
        assert monitor.cycles_completed == 0

    @pytest.mark.asyncio
    async def test_window_bound_skips_old_blocks(self, monitor, ledger):
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        ledger.get_block_number.return_value = 1500
        await monitor.run_cycle()

        ranges = {(call.args[2], call.args[3]) for call in ledger.get_logs.await_args_list}
        assert ranges == {(1400, 1500)}
        assert monitor.cursor.last_processed_block == 1500

    @pytest.mark.asyncio
    async def test_contract_failure_isolated(self, monitor, ledger, dispatcher, make_log):
        """A contract whose RPC always fails does not block the others or the cursor."""
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        ledger.get_block_number.return_value = 1020
        ledger.get_logs = AsyncMock(side_effect=logs_by_contract(make_log, failing={TOKEN_X.address}))

        events = await monitor.run_cycle()

        assert [e.contract_name for e in events] == ["Token Y", "Token Z"]
        assert monitor.cursor.last_processed_block == 1020
        assert monitor.contract_failures == 1
        assert dispatcher.dispatch.call_count == 2

    @pytest.mark.asyncio
    async def test_every_contract_failing_still_advances(self, monitor, ledger):
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        ledger.get_block_number.return_value = 1005
        ledger.get_logs = AsyncMock(side_effect=ConnectionError("rpc down"))

        assert await monitor.run_cycle() == []
        assert monitor.cursor.last_processed_block == 1005
        assert monitor.contract_failures == 3

    @pytest.mark.asyncio
    async def test_height_failure_raises_without_advancing(self, monitor, ledger):
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        ledger.get_block_number = AsyncMock(side_effect=TimeoutError("head unavailable"))

        with pytest.raises(TimeoutError):
            await monitor.run_cycle()

        assert monitor.cursor.last_processed_block == 1000

    @pytest.mark.asyncio
    async def test_fan_out_bounded_by_batch_size(self, ledger, dispatcher, make_log):
        monitor = ScanOrchestrator(make_config(batch_size=2), ledger=ledger, dispatcher=dispatcher)
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        in_flight = 0
        peak = 0

        async def get_logs(address, topics, from_block, to_block):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return []

        ledger.get_block_number.return_value = 1001
        ledger.get_logs = AsyncMock(side_effect=get_logs)

        await monitor.run_cycle()

        assert peak == 2
        assert ledger.get_logs.await_count == 3

    @pytest.mark.asyncio
    async def test_watched_address_labels_direction(self, ledger, dispatcher, make_log):
        monitor = ScanOrchestrator(
            make_config(watched_address=WATCHED), ledger=ledger, dispatcher=dispatcher
        )
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        async def get_logs(address, topics, from_block, to_block):
            if address.lower() != TOKEN_Y.address.lower():
                return []
            if topics[2] is not None:
                return [make_log(1001, recipient=WATCHED, tx_id=1)]
            return [make_log(1002, sender=WATCHED, tx_id=2)]

        ledger.get_block_number.return_value = 1002
        ledger.get_logs = AsyncMock(side_effect=get_logs)

        events = await monitor.run_cycle()

        assert [e.direction for e in events] == [Direction.INCOMING, Direction.OUTGOING]
        assert events[0].human_amount == "1000000000000"

    @pytest.mark.asyncio
    async def test_stop_between_batches_leaves_cursor(self, ledger, dispatcher):
        monitor = ScanOrchestrator(make_config(batch_size=1), ledger=ledger, dispatcher=dispatcher)
        ledger.get_block_number.return_value = 1000
        await monitor.initialize()

        async def get_logs(address, topics, from_block, to_block):
            monitor.stop()
            return []

        ledger.get_block_number.return_value = 1010
        ledger.get_logs = AsyncMock(side_effect=get_logs)

        await monitor.run_cycle()

        # Only the first batch ran; the cycle did not complete
        assert ledger.get_logs.await_count == 1
        assert monitor.cursor.last_processed_block == 1000


class TestLifecycle:
    """Tests for start/stop behaviour."""

    @pytest.mark.asyncio
    async def test_stop_ends_loop_after_in_flight_cycle(self, monitor, ledger, dispatcher, make_log):
        heights = iter([1000, 1010])
        ledger.get_block_number = AsyncMock(side_effect=lambda: next(heights))

        async def get_logs(address, topics, from_block, to_block):
            monitor.stop()
            return [make_log(to_block)]

        ledger.get_logs = AsyncMock(side_effect=get_logs)

        await asyncio.wait_for(monitor.start(), timeout=5)

        assert monitor.state == MonitorState.STOPPED
        assert not monitor.is_running
        # The cycle in flight at stop() was not cut short mid-batch
        assert ledger.get_logs.await_count == 3
        assert monitor.cursor.last_processed_block == 1010
        assert ledger.get_block_number.await_count == 2
        dispatcher.drain.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cycle_error_does_not_stop_loop(self, monitor, ledger):
        calls = 0

        async def get_block_number():
            nonlocal calls
            calls += 1
            if calls == 1:
                return 1000
            if calls <= 4:
                raise ConnectionError("flaky head")
            monitor.stop()
            return 1000

        ledger.get_block_number = AsyncMock(side_effect=get_block_number)
        monitor._sleep_interval = AsyncMock()

        await asyncio.wait_for(monitor.start(), timeout=5)

        assert monitor.cycles_failed == 1
        assert calls == 5
        assert monitor.state == MonitorState.STOPPED

    @pytest.mark.asyncio
    async def test_start_is_reentrant_noop(self, monitor, ledger):
        monitor.is_running = True

        await monitor.start()

        ledger.get_block_number.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_wakes_sleep(self, monitor, ledger):
        ledger.get_block_number.return_value = 1000
        task = asyncio.create_task(monitor.start())

        while monitor.state != MonitorState.POLLING:
            await asyncio.sleep(0)
        await asyncio.sleep(0)

        monitor.stop()
        await asyncio.wait_for(task, timeout=0.5)

        assert monitor.state == MonitorState.STOPPED

    def test_stop_before_start(self, monitor):
        monitor.stop()
        assert monitor.state == MonitorState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_before_start_is_honoured(self, monitor, ledger):
        monitor.stop()

        await asyncio.wait_for(monitor.start(), timeout=1)

        assert monitor.state == MonitorState.STOPPED
        assert not monitor.is_running
        ledger.get_block_number.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restart_after_early_stop_polls(self, monitor, ledger):
        monitor.stop()
        await monitor.start()

        monitor._sleep_interval = AsyncMock(side_effect=monitor.stop)
        await asyncio.wait_for(monitor.start(), timeout=1)

        # One call to initialize, one for the polling cycle
        assert ledger.get_block_number.await_count == 2
        assert monitor.cycles_completed == 0
        assert monitor.state == MonitorState.STOPPED

    @pytest.mark.asyncio
    async def test_status(self, monitor, ledger):
        ledger.get_block_number.return_value = 1234
        await monitor.initialize()

        status = monitor.get_status()

        assert status["last_processed_block"] == 1234
        assert status["active_rpc"] == "http://primary.rpc"
        assert status["watched_address"] is None
        assert status["scanner"]["decode_failures"] == 0
        monitor.log_metrics()
