"""Per-host actions: status query, channel switch and reboot."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from typing import Protocol

from .models import (
    BatchContext,
    CommandKind,
    ConfigurationError,
    HostDescriptor,
    HostOutcome,
    MalformedOutputError,
    RemoteCommandFailed,
)
from .transport import OPENSSH_CLOSED_MESSAGE, CompletedCommand, RemoteRunner

logger = logging.getLogger(__name__)

STATUS_FIELDS = ("network", "channel", "hosting_info", "holoport_model")

SWITCH_CHANNEL_ACK = "Switching HoloPort to channel: {channel}"
REBOOT_COMMAND = (
    "rm -rf /var/lib/holochain-rsm && "
    "rm -rf /var/lib/configure-holochain && "
    "reboot"
)


class Acknowledgement(Protocol):
    """Decides whether a completed remote command acknowledged the action."""

    def expected(self, host: HostDescriptor, context: BatchContext) -> str: ...

    def matches(
        self, result: CompletedCommand, host: HostDescriptor, context: BatchContext
    ) -> bool: ...


@dataclass(frozen=True)
class StreamAcknowledgement:
    """Exact match of one trimmed output stream against a template.

    The template is formatted with ``address`` and ``channel``.
    """

    stream: str
    template: str

    def __post_init__(self) -> None:
        if self.stream not in ("stdout", "stderr"):
            raise ValueError(f"stream must be 'stdout' or 'stderr', got {self.stream!r}")

    def expected(self, host: HostDescriptor, context: BatchContext) -> str:
        return self.template.format(
            address=host.address, channel=context.target_channel or ""
        )

    def matches(
        self, result: CompletedCommand, host: HostDescriptor, context: BatchContext
    ) -> bool:
        return getattr(result, self.stream).strip() == self.expected(host, context)


def parse_status(stdout: str) -> dict[str, str]:
    """Split status command output into its four positional fields.

    Raises:
        ValueError: If the output does not hold exactly four tokens.
    """
    tokens = stdout.split()
    if len(tokens) != len(STATUS_FIELDS):
        raise ValueError(
            f"Malformed status output: expected {len(STATUS_FIELDS)} fields, "
            f"got {len(tokens)}: {stdout.strip()!r}"
        )
    return dict(zip(STATUS_FIELDS, tokens))


async def get_status(
    runner: RemoteRunner,
    host: HostDescriptor,
    context: BatchContext,
    *,
    command: str = "holoport-status",
    timeout: float = 30,
) -> HostOutcome:
    """Query a host's network, channel, hosting info and model.

    Returns the success outcome. Remote failures raise
    ``RemoteCommandFailed`` carrying a failure outcome with
    ``error_detail`` set and every payload field ``None``.
    """
    result = await runner.run(host, command, timeout)

    if not result.ok:
        outcome = HostOutcome.for_host(
            host,
            context,
            CommandKind.GET_STATUS,
            succeeded=False,
            error_detail=result.diagnostic,
        )
        raise RemoteCommandFailed(outcome)

    try:
        fields = parse_status(result.stdout)
    except ValueError as e:
        outcome = HostOutcome.for_host(
            host, context, CommandKind.GET_STATUS, succeeded=False, error_detail=str(e)
        )
        raise MalformedOutputError(outcome) from e

    return HostOutcome.for_host(
        host, context, CommandKind.GET_STATUS, succeeded=True, **fields
    )


async def switch_channel(
    runner: RemoteRunner,
    host: HostDescriptor,
    context: BatchContext,
    *,
    timeout: float = 4,
    acknowledgement: Acknowledgement | None = None,
) -> HostOutcome:
    """Move a host onto ``context.target_channel`` with ``hpos-update``."""
    if not context.target_channel:
        raise ConfigurationError("switchChannel requires a target channel")

    ack = acknowledgement or StreamAcknowledgement("stdout", SWITCH_CHANNEL_ACK)
    result = await runner.run(
        host, f"hpos-update {shlex.quote(context.target_channel)}", timeout
    )
    succeeded = ack.matches(result, host, context)

    return HostOutcome.for_host(
        host,
        context,
        CommandKind.SWITCH_CHANNEL,
        succeeded=succeeded,
        error_detail=None if succeeded else _mismatch_detail(result, "stdout"),
    )


async def reboot_host(
    runner: RemoteRunner,
    host: HostDescriptor,
    context: BatchContext,
    *,
    timeout: float = 4,
    acknowledgement: Acknowledgement | None = None,
) -> HostOutcome:
    """Wipe the Holochain state directories and reboot the host.

    The reboot severs the SSH session, so success is read from the
    disconnect message on stderr. That message depends on the SSH
    client in use, which makes this check unreliable; mismatches are
    logged with what was actually seen.
    """
    ack = acknowledgement or StreamAcknowledgement("stderr", OPENSSH_CLOSED_MESSAGE)
    result = await runner.run(host, REBOOT_COMMAND, timeout)
    succeeded = ack.matches(result, host, context)

    if not succeeded:
        logger.warning(
            "Reboot of %s not confirmed: expected stderr %r, got %r (error: %s)",
            host.address,
            ack.expected(host, context),
            result.stderr.strip(),
            result.error,
        )

    return HostOutcome.for_host(
        host,
        context,
        CommandKind.REBOOT,
        succeeded=succeeded,
        error_detail=None if succeeded else _mismatch_detail(result, "stderr"),
    )


def _mismatch_detail(result: CompletedCommand, stream: str) -> str:
    detail = result.diagnostic
    if detail:
        return detail
    observed = getattr(result, stream).strip()
    if observed:
        return f"Unexpected {stream}: {observed}"
    return f"No acknowledgement on {stream}"
