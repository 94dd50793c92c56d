"""holofleet: Run one command across a fleet of HoloPorts over SSH."""

from .config import Config, Defaults, Timeouts, load_config
from .executor import Dispatcher, HostState, HostStatus, dispatch
from .models import (
    BatchContext,
    CommandKind,
    ConfigurationError,
    DispatchCancelled,
    HolofleetError,
    HostDescriptor,
    HostOutcome,
    MalformedOutputError,
    RemoteCommandFailed,
    SettledOutcome,
    SettleStatus,
)

__all__ = [
    "BatchContext",
    "CommandKind",
    "Config",
    "ConfigurationError",
    "Defaults",
    "Dispatcher",
    "DispatchCancelled",
    "HolofleetError",
    "HostDescriptor",
    "HostOutcome",
    "HostState",
    "HostStatus",
    "MalformedOutputError",
    "RemoteCommandFailed",
    "SettledOutcome",
    "SettleStatus",
    "Timeouts",
    "dispatch",
    "load_config",
]
