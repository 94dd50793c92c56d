"""Configuration loader for holofleet."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .models import ConfigurationError, HostDescriptor
from .transport import OPENSSH_CLOSED_MESSAGE

TRANSPORTS = ("asyncssh", "openssh")


@dataclass
class Defaults:
    """Default values that can be overridden per host."""

    user: str = "root"
    port: int = 22


@dataclass
class Timeouts:
    """Per-command timeouts in seconds."""

    status: float = 30
    switch_channel: float = 4
    reboot: float = 4


@dataclass
class Config:
    """Main configuration for the dispatcher."""

    hosts: list[HostDescriptor]
    ssh_key: Path | None = None
    target_channel: str | None = None
    transport: str = "asyncssh"
    max_concurrency: int = 0  # 0 means no cap
    status_command: str = "holoport-status"
    reboot_disconnect_message: str = OPENSSH_CLOSED_MESSAGE
    timeouts: Timeouts = field(default_factory=Timeouts)
    defaults: Defaults = field(default_factory=Defaults)
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    source_path: Path | None = None  # Path of the loaded config file


def load_config(config_path: str | Path) -> Config:
    """Load and validate configuration from a YAML file."""
    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration must be a mapping")

    config = _parse_config(raw)
    config.source_path = config_path
    return config


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    return Defaults(
        user=defaults_raw.get("user", "root"),
        port=int(defaults_raw.get("port", 22)),
    )


def _parse_timeouts(raw: dict[str, Any]) -> Timeouts:
    timeouts_raw = raw.get("timeouts") or {}
    timeouts = Timeouts(
        status=float(timeouts_raw.get("status", 30)),
        switch_channel=float(timeouts_raw.get("switch_channel", 4)),
        reboot=float(timeouts_raw.get("reboot", 4)),
    )
    for name, value in vars(timeouts).items():
        if value <= 0:
            raise ConfigurationError(f"Timeout '{name}' must be positive, got {value}")
    return timeouts


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw YAML data into Config object."""
    defaults = _parse_defaults(raw)

    hosts_raw = raw.get("hosts", [])
    if not hosts_raw:
        raise ConfigurationError("No hosts defined in configuration")

    hosts = []
    seen: set[str] = set()
    for host_raw in hosts_raw:
        host = _parse_host(host_raw, defaults)
        if host.name in seen:
            raise ConfigurationError(f"Duplicate host name: '{host.name}'")
        seen.add(host.name)
        hosts.append(host)

    transport = raw.get("transport", "asyncssh")
    if transport not in TRANSPORTS:
        raise ConfigurationError(
            f"Unknown transport '{transport}', expected one of: {', '.join(TRANSPORTS)}"
        )

    max_concurrency = int(raw.get("max_concurrency") or 0)
    if max_concurrency < 0:
        raise ConfigurationError(
            f"max_concurrency must be >= 0, got {max_concurrency}"
        )

    ssh_key = raw.get("ssh_key")
    target_channel = raw.get("target_channel")

    return Config(
        hosts=hosts,
        ssh_key=Path(ssh_key).expanduser() if ssh_key else None,
        target_channel=str(target_channel) if target_channel else None,
        transport=transport,
        max_concurrency=max_concurrency,
        status_command=raw.get("status_command", "holoport-status"),
        reboot_disconnect_message=raw.get(
            "reboot_disconnect_message", OPENSSH_CLOSED_MESSAGE
        ),
        timeouts=_parse_timeouts(raw),
        defaults=defaults,
        log_dir=Path(raw.get("log_dir", "logs")).expanduser().resolve(),
    )


def _parse_host(host_raw: dict[str, Any], defaults: Defaults) -> HostDescriptor:
    """Parse a single host entry."""
    if not isinstance(host_raw, dict):
        raise ConfigurationError(f"Host entry must be a mapping, got: {host_raw!r}")

    name = host_raw.get("name")
    if not name:
        raise ConfigurationError("Host must have a 'name' field")

    # Legacy inventories key the address as "IP"
    address = host_raw.get("address") or host_raw.get("IP")
    if not address:
        raise ConfigurationError(f"Host '{name}' must have an 'address' field")

    return HostDescriptor(
        name=str(name),
        address=str(address),
        user=host_raw.get("user", defaults.user),
        port=int(host_raw.get("port", defaults.port)),
    )
