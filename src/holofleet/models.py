"""Data model shared by the dispatcher and the per-host actions."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class HolofleetError(Exception):
    """Base class for holofleet errors."""


class ConfigurationError(HolofleetError, ValueError):
    """Missing or invalid configuration. Raised before any host is contacted."""


class DispatchCancelled(HolofleetError):
    """The batch was cancelled before this host settled."""


class RemoteCommandFailed(HolofleetError):
    """A per-host action rejected. Carries the failure-shaped outcome."""

    def __init__(self, outcome: HostOutcome, message: str | None = None):
        super().__init__(message or outcome.error_detail or "Remote command failed")
        self.outcome = outcome


class MalformedOutputError(RemoteCommandFailed):
    """Remote output did not have the expected shape."""


class CommandKind(Enum):
    """Command that can be dispatched across the fleet."""

    GET_STATUS = "getStatus"
    SWITCH_CHANNEL = "switchChannel"
    REBOOT = "rebootHoloports"

    @classmethod
    def parse(cls, value: CommandKind | str) -> CommandKind:
        """Resolve an enum member, enum value or CLI alias."""
        if isinstance(value, cls):
            return value
        kind = _ALIASES.get(value) if isinstance(value, str) else None
        if kind is None:
            raise ConfigurationError(f"Unknown command: {value}")
        return kind


_ALIASES: dict[str, CommandKind] = {
    **{kind.value: kind for kind in CommandKind},
    "status": CommandKind.GET_STATUS,
    "switch-channel": CommandKind.SWITCH_CHANNEL,
    "reboot": CommandKind.REBOOT,
    "GetStatus": CommandKind.GET_STATUS,
    "SwitchChannel": CommandKind.SWITCH_CHANNEL,
    "Reboot": CommandKind.REBOOT,
}


@dataclass(frozen=True)
class HostDescriptor:
    """A HoloPort reachable over SSH."""

    name: str
    address: str
    user: str = "root"
    port: int = 22


@dataclass(frozen=True)
class BatchContext:
    """Values shared by every per-host action of one dispatch."""

    ssh_key_path: Path
    target_channel: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class HostOutcome:
    """Result produced for a single host."""

    host_name: str
    host_address: str
    timestamp: datetime
    command: CommandKind
    succeeded: bool
    error_detail: str | None = None
    # GetStatus payload
    network: str | None = None
    channel: str | None = None
    hosting_info: str | None = None
    holoport_model: str | None = None

    @classmethod
    def for_host(
        cls,
        host: HostDescriptor,
        context: BatchContext,
        command: CommandKind,
        succeeded: bool,
        **kwargs: Any,
    ) -> HostOutcome:
        return cls(
            host_name=host.name,
            host_address=host.address,
            timestamp=context.timestamp,
            command=command,
            succeeded=succeeded,
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["command"] = self.command.value
        return data


class SettleStatus(Enum):
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


@dataclass
class SettledOutcome:
    """Terminal state of one per-host action.

    ``outcome`` is always populated, so callers can read per-host data
    without caring how the action settled. ``status`` and ``reason``
    keep the distinction between an action that returned and one that
    raised.
    """

    status: SettleStatus
    outcome: HostOutcome
    reason: BaseException | None = None

    @property
    def fulfilled(self) -> bool:
        return self.status is SettleStatus.FULFILLED

    @property
    def succeeded(self) -> bool:
        return self.fulfilled and self.outcome.succeeded

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "outcome": self.outcome.to_dict(),
        }
        if self.reason is not None:
            data["reason"] = str(self.reason)
        return data
