"""Tests for the remote command transports."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from holofleet.actions import StreamAcknowledgement, reboot_host
from holofleet.models import BatchContext, HostDescriptor
from holofleet.transport import (
    AsyncSSHRunner,
    CompletedCommand,
    OpenSSHRunner,
    create_runner,
)

HOST = HostDescriptor(name="hp-01", address="10.0.0.5", user="root", port=2222)
KEY = Path("/keys/holoport")


def test_completed_command_ok() -> None:
    assert CompletedCommand(0).ok
    assert not CompletedCommand(1).ok
    assert not CompletedCommand(0, error="boom").ok
    assert not CompletedCommand(None, timed_out=True).ok


def test_completed_command_diagnostic_prefers_stderr() -> None:
    assert CompletedCommand(1, stderr=" denied \n", error="x").diagnostic == "denied"
    assert CompletedCommand(None, error="SSH error: reset").diagnostic == "SSH error: reset"
    assert CompletedCommand(3).diagnostic == "Command exited with status 3"
    assert CompletedCommand(0).diagnostic is None


@pytest.fixture
def mock_conn() -> MagicMock:
    """An asyncssh connection usable as an async context manager."""
    conn = MagicMock()
    conn.__aenter__ = AsyncMock(return_value=conn)
    conn.__aexit__ = AsyncMock(return_value=None)
    conn.run = AsyncMock()
    return conn


@pytest.mark.asyncio
async def test_asyncssh_runner_success(mock_conn: MagicMock) -> None:
    mock_conn.run.return_value = MagicMock(
        exit_status=0, stdout="mainnet rc-2 nat-forwarded HP-3\n", stderr=""
    )

    with patch(
        "holofleet.transport.asyncssh.connect", AsyncMock(return_value=mock_conn)
    ) as connect:
        result = await AsyncSSHRunner(KEY).run(HOST, "holoport-status", 30)

    assert result.ok
    assert result.stdout == "mainnet rc-2 nat-forwarded HP-3\n"
    connect.assert_awaited_once_with(
        "10.0.0.5",
        port=2222,
        username="root",
        client_keys=[str(KEY)],
        known_hosts=None,
    )
    mock_conn.run.assert_awaited_once_with("holoport-status", check=False)


@pytest.mark.asyncio
async def test_asyncssh_runner_decodes_bytes(mock_conn: MagicMock) -> None:
    mock_conn.run.return_value = MagicMock(exit_status=1, stdout=b"", stderr=b"nope\n")

    with patch("holofleet.transport.asyncssh.connect", AsyncMock(return_value=mock_conn)):
        result = await AsyncSSHRunner(KEY).run(HOST, "x", 30)

    assert result.exit_status == 1
    assert result.stderr == "nope\n"


@pytest.mark.asyncio
async def test_asyncssh_runner_connection_refused() -> None:
    connect = AsyncMock(side_effect=OSError("Connection refused"))

    with patch("holofleet.transport.asyncssh.connect", connect):
        result = await AsyncSSHRunner(KEY).run(HOST, "x", 30)

    assert not result.ok
    assert result.error == "Connection error: Connection refused"


@pytest.mark.asyncio
async def test_asyncssh_runner_reports_dropped_session(mock_conn: MagicMock) -> None:
    """A session dropped by the host reads like the ssh client's message."""
    mock_conn.run.side_effect = asyncssh.ConnectionLost("Connection lost")

    with patch("holofleet.transport.asyncssh.connect", AsyncMock(return_value=mock_conn)):
        result = await AsyncSSHRunner(KEY).run(HOST, "reboot", 4)

    assert result.stderr == "Connection to 10.0.0.5 closed by remote host."
    assert result.error.startswith("SSH error")


@pytest.mark.asyncio
async def test_asyncssh_runner_uses_configured_disconnect_message(
    mock_conn: MagicMock,
) -> None:
    """A reboot checked against a custom message is confirmed over asyncssh."""
    message = "Shared connection to {address} closed."
    mock_conn.run.side_effect = asyncssh.ConnectionLost("Connection lost")
    runner = create_runner("asyncssh", KEY, disconnect_message=message)

    with patch("holofleet.transport.asyncssh.connect", AsyncMock(return_value=mock_conn)):
        result = await runner.run(HOST, "reboot", 4)
        outcome = await reboot_host(
            runner,
            HOST,
            BatchContext(ssh_key_path=KEY),
            acknowledgement=StreamAcknowledgement("stderr", message),
        )

    assert result.stderr == "Shared connection to 10.0.0.5 closed."
    assert result.disconnected is True
    assert outcome.succeeded is True
    assert outcome.error_detail is None


@pytest.mark.asyncio
async def test_asyncssh_runner_timeout() -> None:
    async def hang(*args, **kwargs):
        await asyncio.sleep(5)

    with patch("holofleet.transport.asyncssh.connect", hang):
        result = await AsyncSSHRunner(KEY).run(HOST, "x", 0.05)

    assert result.timed_out
    assert result.exit_status is None
    assert "timed out" in result.error


def test_openssh_argv() -> None:
    argv = OpenSSHRunner(KEY).build_argv(HOST, "hpos-update beta")

    assert argv == [
        "ssh",
        "-i", "/keys/holoport",
        "-p", "2222",
        "-o", "BatchMode=yes",
        "root@10.0.0.5",
        "hpos-update beta",
    ]


@pytest.mark.asyncio
async def test_openssh_runner_exit_status() -> None:
    ok = await OpenSSHRunner(KEY, ssh_binary="true").run(HOST, "x", 5)
    failed = await OpenSSHRunner(KEY, ssh_binary="false").run(HOST, "x", 5)

    assert ok.exit_status == 0
    assert failed.exit_status == 1
    assert not failed.ok


@pytest.mark.asyncio
async def test_openssh_runner_missing_binary() -> None:
    runner = OpenSSHRunner(KEY, ssh_binary="/nonexistent/ssh")

    result = await runner.run(HOST, "x", 5)

    assert result.error.startswith("Failed to start ssh")


def test_create_runner() -> None:
    assert isinstance(create_runner("asyncssh", KEY), AsyncSSHRunner)
    assert isinstance(create_runner("openssh", KEY), OpenSSHRunner)
    with pytest.raises(ValueError):
        create_runner("telnet", KEY)
