"""Concurrent fan-out of one command across the fleet."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from .actions import StreamAcknowledgement, get_status, reboot_host, switch_channel
from .config import TRANSPORTS, Config
from .models import (
    BatchContext,
    CommandKind,
    ConfigurationError,
    DispatchCancelled,
    HostDescriptor,
    HostOutcome,
    RemoteCommandFailed,
    SettledOutcome,
    SettleStatus,
)
from .transport import RemoteRunner, create_runner

logger = logging.getLogger(__name__)


class HostStatus(Enum):
    """Status of a host within a dispatch."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class HostState:
    """Runtime state for a host."""

    host: HostDescriptor
    status: HostStatus = HostStatus.PENDING
    output_lines: list[str] = field(default_factory=list)
    settled: SettledOutcome | None = None
    log_file: Path | None = None


# Type alias for output callback
OutputCallback = Callable[[str, str], None]  # (host_name, line) -> None
StatusCallback = Callable[[str, HostStatus], None]  # (host_name, status) -> None
HostAction = Callable[[HostDescriptor, BatchContext], Awaitable[HostOutcome]]


class Dispatcher:
    """Runs one command on every host concurrently and collects the outcomes."""

    def __init__(
        self,
        config: Config,
        runner: RemoteRunner | None = None,
        on_output: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
        enable_logging: bool = False,
    ):
        self.config = config
        self.runner = runner
        self.on_output = on_output
        self.on_status = on_status
        self.enable_logging = enable_logging
        self.states: dict[str, HostState] = {}
        self._log_dir: Path | None = None
        self._cancel_event: asyncio.Event | None = None

    def _setup_logging(self, context: BatchContext) -> None:
        """Set up a per-batch log directory named after the batch timestamp."""
        if not self.enable_logging:
            return
        stamp = context.timestamp.astimezone().strftime("%Y%m%d_%H%M%S")
        log_dir = self.config.log_dir / stamp
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            if self.config.source_path and self.config.source_path.exists():
                shutil.copy(self.config.source_path, log_dir / "config.yaml")
        except OSError as e:
            logger.warning("Per-host log files disabled, cannot use %s: %s", log_dir, e)
            self._log_dir = None
            return
        self._log_dir = log_dir

    def _emit_output(self, host_name: str, line: str) -> None:
        """Emit output line for a host."""
        if host_name in self.states:
            state = self.states[host_name]
            state.output_lines.append(line)
            if state.log_file:
                try:
                    with open(state.log_file, "a") as f:
                        f.write(line + "\n")
                except OSError as e:
                    logger.warning("Cannot write %s, disabling its log: %s", state.log_file, e)
                    state.log_file = None

        if self.on_output:
            try:
                self.on_output(host_name, line)
            except Exception:
                logger.exception("Output callback failed for %s", host_name)

    def _emit_status(self, host_name: str, status: HostStatus) -> None:
        """Emit status change for a host."""
        if host_name in self.states:
            self.states[host_name].status = status
        if self.on_status:
            try:
                self.on_status(host_name, status)
            except Exception:
                logger.exception("Status callback failed for %s", host_name)

    def preflight(self, kind: CommandKind | str) -> tuple[CommandKind, BatchContext]:
        """Validate everything a dispatch needs before any host is contacted.

        Raises:
            ConfigurationError: Unknown command, missing SSH key, unknown
                transport, negative concurrency limit, or a channel switch
                without a target channel.
        """
        if self.config.ssh_key is None:
            raise ConfigurationError("SSH key path is required (--ssh-key-path)")

        if self.runner is None and self.config.transport not in TRANSPORTS:
            raise ConfigurationError(
                f"Unknown transport '{self.config.transport}', "
                f"expected one of: {', '.join(TRANSPORTS)}"
            )

        if self.config.max_concurrency < 0:
            raise ConfigurationError(
                f"max_concurrency must be >= 0, got {self.config.max_concurrency}"
            )

        kind = CommandKind.parse(kind)

        if kind is CommandKind.SWITCH_CHANNEL and not self.config.target_channel:
            raise ConfigurationError(
                "switchChannel requires a target channel (--target-channel)"
            )

        context = BatchContext(
            ssh_key_path=self.config.ssh_key,
            target_channel=self.config.target_channel,
            timestamp=datetime.now(timezone.utc),
        )
        return kind, context

    def resolve_action(self, kind: CommandKind, runner: RemoteRunner) -> HostAction:
        """Map a command kind to its per-host action."""
        timeouts = self.config.timeouts
        if kind is CommandKind.GET_STATUS:
            return partial(
                get_status,
                runner,
                command=self.config.status_command,
                timeout=timeouts.status,
            )
        if kind is CommandKind.SWITCH_CHANNEL:
            return partial(switch_channel, runner, timeout=timeouts.switch_channel)
        if kind is CommandKind.REBOOT:
            return partial(
                reboot_host,
                runner,
                timeout=timeouts.reboot,
                acknowledgement=StreamAcknowledgement(
                    "stderr", self.config.reboot_disconnect_message
                ),
            )
        raise ConfigurationError(f"Unknown command: {kind}")

    async def dispatch(
        self,
        kind: CommandKind | str,
        hosts: Iterable[HostDescriptor] | None = None,
    ) -> list[SettledOutcome]:
        """Run ``kind`` on every host and wait for all of them to settle.

        Hosts default to the configured inventory. The result holds one
        settled outcome per host, in input order. Only configuration
        errors are raised; per-host failures are part of the result.
        """
        kind, context = self.preflight(kind)
        runner = self.runner or create_runner(
            self.config.transport,
            context.ssh_key_path,
            disconnect_message=self.config.reboot_disconnect_message,
        )
        action = self.resolve_action(kind, runner)
        hosts = list(self.config.hosts if hosts is None else hosts)

        self._setup_logging(context)
        self.states = {}
        for host in hosts:
            log_file = None
            if self._log_dir:
                log_file = self._log_dir / _log_file_name(host)
            self.states[host.name] = HostState(host=host, log_file=log_file)

        self._cancel_event = asyncio.Event()
        semaphore = None
        if self.config.max_concurrency:
            semaphore = asyncio.Semaphore(self.config.max_concurrency)

        logger.info(
            "Dispatching %s to %d hosts (max_concurrency=%s)",
            kind.value,
            len(hosts),
            self.config.max_concurrency or "unbounded",
        )

        # Run all hosts in parallel
        tasks = [self._settle(host, kind, action, context, semaphore) for host in hosts]
        results = await asyncio.gather(*tasks)
        self._cancel_event = None
        return list(results)

    def cancel(self) -> None:
        """Abort the running batch. Unfinished hosts settle as cancelled."""
        if self._cancel_event is not None:
            logger.info("Cancelling dispatch")
            self._cancel_event.set()

    async def _settle(
        self,
        host: HostDescriptor,
        kind: CommandKind,
        action: HostAction,
        context: BatchContext,
        semaphore: asyncio.Semaphore | None,
    ) -> SettledOutcome:
        """Run the action for one host and turn whatever happens into a settlement."""
        try:
            if semaphore is None:
                outcome = await self._run_action(host, action, context)
            else:
                async with semaphore:
                    outcome = await self._run_action(host, action, context)
        except RemoteCommandFailed as e:
            settled = SettledOutcome(SettleStatus.REJECTED, e.outcome, e)
        except DispatchCancelled as e:
            outcome = HostOutcome.for_host(
                host, context, kind, succeeded=False, error_detail="Dispatch cancelled"
            )
            settled = SettledOutcome(SettleStatus.REJECTED, outcome, e)
        except Exception as e:
            logger.exception("Unexpected error for %s", host.address)
            outcome = HostOutcome.for_host(
                host,
                context,
                kind,
                succeeded=False,
                error_detail=f"{type(e).__name__}: {e}",
            )
            settled = SettledOutcome(SettleStatus.REJECTED, outcome, e)
        else:
            settled = SettledOutcome(SettleStatus.FULFILLED, outcome)

        self._report(host, settled)
        return settled

    async def _run_action(
        self, host: HostDescriptor, action: HostAction, context: BatchContext
    ) -> HostOutcome:
        """Run one action, racing it against the batch cancel event."""
        cancel_event = self._cancel_event
        if cancel_event is None or cancel_event.is_set():
            raise DispatchCancelled()

        self._emit_status(host.name, HostStatus.RUNNING)
        self._emit_output(host.name, f"Connecting to {host.user}@{host.address}:{host.port}...")

        task = asyncio.ensure_future(action(host, context))
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_wait.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()

        try:
            await task
        except asyncio.CancelledError:
            pass
        raise DispatchCancelled()

    def _report(self, host: HostDescriptor, settled: SettledOutcome) -> None:
        """Write the per-host completion line and final status."""
        state = self.states.get(host.name)
        if state is not None:
            state.settled = settled

        outcome = settled.outcome
        if isinstance(settled.reason, DispatchCancelled):
            logger.info("Cancelled %s", host.address)
            self._emit_output(host.name, "Cancelled")
            self._emit_status(host.name, HostStatus.CANCELLED)
        elif settled.succeeded:
            logger.info("Success for %s", host.address)
            self._emit_output(host.name, f"Success: {_describe(outcome)}")
            self._emit_status(host.name, HostStatus.SUCCESS)
        else:
            logger.info("Error for %s: %s", host.address, outcome.error_detail)
            self._emit_output(host.name, f"ERROR: {outcome.error_detail}")
            self._emit_status(host.name, HostStatus.FAILED)


def _log_file_name(host: HostDescriptor) -> str:
    return host.name.replace("/", "_").replace("\\", "_") + ".log"


def _describe(outcome: HostOutcome) -> str:
    if outcome.command is CommandKind.GET_STATUS:
        return (
            f"network={outcome.network} channel={outcome.channel} "
            f"hosting={outcome.hosting_info} model={outcome.holoport_model}"
        )
    if outcome.command is CommandKind.SWITCH_CHANNEL:
        return "channel switched"
    return "reboot initiated"


async def dispatch(
    hosts: Iterable[HostDescriptor],
    kind: CommandKind | str,
    config: Config,
    runner: RemoteRunner | None = None,
) -> list[SettledOutcome]:
    """Dispatch ``kind`` to ``hosts`` with a throwaway dispatcher."""
    return await Dispatcher(config, runner=runner).dispatch(kind, hosts)
