"""Remote command transports."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import asyncssh

from .models import HostDescriptor

logger = logging.getLogger(__name__)

# What the OpenSSH client prints when the server drops the session.
OPENSSH_CLOSED_MESSAGE = "Connection to {address} closed by remote host."


@dataclass
class CompletedCommand:
    """Result of running one command on one host."""

    exit_status: int | None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    timed_out: bool = False
    disconnected: bool = False  # peer dropped the session mid-command

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out and self.exit_status == 0

    @property
    def diagnostic(self) -> str | None:
        """Best available text describing why the command failed."""
        stderr = self.stderr.strip()
        if stderr:
            return stderr
        if self.timed_out:
            return self.error or "Command timed out"
        if self.error:
            return self.error
        if self.exit_status not in (0, None):
            return f"Command exited with status {self.exit_status}"
        return None


class RemoteRunner(Protocol):
    """Runs a command on a host. Failures are reported, never raised."""

    async def run(
        self, host: HostDescriptor, command: str, timeout: float
    ) -> CompletedCommand: ...


class AsyncSSHRunner:
    """Runs commands with asyncssh.

    asyncssh raises instead of printing a disconnect notice, so a session
    dropped mid-command is reported on stderr as ``disconnect_message``
    (formatted with ``address``), the text the stderr-based reboot check
    expects.
    """

    def __init__(
        self,
        ssh_key: Path,
        known_hosts: str | None = None,
        disconnect_message: str = OPENSSH_CLOSED_MESSAGE,
    ):
        self.ssh_key = ssh_key
        self.known_hosts = known_hosts
        self.disconnect_message = disconnect_message

    async def run(
        self, host: HostDescriptor, command: str, timeout: float
    ) -> CompletedCommand:
        try:
            return await asyncio.wait_for(self._run(host, command), timeout)
        except asyncio.TimeoutError:
            return CompletedCommand(
                exit_status=None,
                error=f"Command timed out after {timeout:g}s",
                timed_out=True,
            )

    async def _run(self, host: HostDescriptor, command: str) -> CompletedCommand:
        try:
            conn = await asyncssh.connect(
                host.address,
                port=host.port,
                username=host.user,
                client_keys=[str(self.ssh_key)],
                known_hosts=self.known_hosts,
            )
        except (asyncssh.Error, OSError) as e:
            return CompletedCommand(exit_status=None, error=f"Connection error: {e}")

        async with conn:
            try:
                result = await conn.run(command, check=False)
            except (asyncssh.ConnectionLost, asyncssh.DisconnectError) as e:
                logger.debug("Connection to %s lost: %s", host.address, e)
                return CompletedCommand(
                    exit_status=None,
                    stderr=self.disconnect_message.format(
                        address=host.address, channel=""
                    ),
                    error=f"SSH error: {e}",
                    disconnected=True,
                )
            except asyncssh.Error as e:
                return CompletedCommand(exit_status=None, error=f"SSH error: {e}")

        return CompletedCommand(
            exit_status=result.exit_status,
            stdout=_as_text(result.stdout),
            stderr=_as_text(result.stderr),
        )


class OpenSSHRunner:
    """Runs commands through the system ``ssh`` client."""

    def __init__(self, ssh_key: Path, ssh_binary: str = "ssh"):
        self.ssh_key = ssh_key
        self.ssh_binary = ssh_binary

    def build_argv(self, host: HostDescriptor, command: str) -> list[str]:
        return [
            self.ssh_binary,
            "-i", str(self.ssh_key),
            "-p", str(host.port),
            "-o", "BatchMode=yes",
            f"{host.user}@{host.address}",
            command,
        ]

    async def run(
        self, host: HostDescriptor, command: str, timeout: float
    ) -> CompletedCommand:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_argv(host, command),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return CompletedCommand(exit_status=None, error=f"Failed to start ssh: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return CompletedCommand(
                exit_status=None,
                error=f"Command timed out after {timeout:g}s",
                timed_out=True,
            )

        return CompletedCommand(
            exit_status=proc.returncode,
            stdout=_as_text(stdout),
            stderr=_as_text(stderr),
        )


def create_runner(
    transport: str,
    ssh_key: Path,
    disconnect_message: str = OPENSSH_CLOSED_MESSAGE,
) -> RemoteRunner:
    """Build the runner named by the ``transport`` config value."""
    if transport == "asyncssh":
        return AsyncSSHRunner(ssh_key, disconnect_message=disconnect_message)
    if transport == "openssh":
        return OpenSSHRunner(ssh_key)
    raise ValueError(f"Unknown transport: {transport}")


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
