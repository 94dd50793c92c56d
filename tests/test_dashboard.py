"""Tests for the TUI dashboard."""

import pytest

from holofleet.config import Config
from holofleet.dashboard import Dashboard, StatusBar
from holofleet.executor import HostStatus
from holofleet.models import CommandKind, DispatchCancelled, SettleStatus
from holofleet.transport import CompletedCommand
from tests.fake_runner import FakeRunner


@pytest.mark.asyncio
async def test_dashboard_shows_every_host(config: Config) -> None:
    runner = FakeRunner(
        {"10.0.0.7": CompletedCommand(1, stderr="down")},
        default=CompletedCommand(0, stdout="mainnet rc-2 nat HP-3"),
    )
    app = Dashboard(config, CommandKind.GET_STATUS, runner=runner, enable_logging=False)

    async with app.run_test() as pilot:
        await app.workers.wait_for_complete()
        await pilot.pause()

        assert len(app.results) == 3
        assert app.panels["hp-01"].status is HostStatus.SUCCESS
        assert app.panels["hp-03"].status is HostStatus.FAILED
        status_bar = app.query_one("#status-bar", StatusBar)
        assert status_bar.completed == 3
        assert status_bar.running is False


@pytest.mark.asyncio
async def test_quit_keeps_what_settled(config: Config) -> None:
    """Quitting mid-batch cancels the slow hosts and still collects every result."""
    runner = FakeRunner(
        default=CompletedCommand(0, stdout="mainnet rc-2 nat HP-3"),
        delays={"10.0.0.6": 5, "10.0.0.7": 5},
    )
    app = Dashboard(config, CommandKind.GET_STATUS, runner=runner, enable_logging=False)

    async with app.run_test() as pilot:
        await pilot.pause(0.1)
        await pilot.press("q")

    assert len(app.results) == 3
    assert app.results[0].succeeded
    for settled in app.results[1:]:
        assert settled.status is SettleStatus.REJECTED
        assert isinstance(settled.reason, DispatchCancelled)
