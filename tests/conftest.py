"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from holofleet.config import Config
from holofleet.models import HostDescriptor


@pytest.fixture
def hosts() -> list[HostDescriptor]:
    return [
        HostDescriptor(name="hp-01", address="10.0.0.5"),
        HostDescriptor(name="hp-02", address="10.0.0.6"),
        HostDescriptor(name="hp-03", address="10.0.0.7"),
    ]


@pytest.fixture
def config(hosts: list[HostDescriptor], tmp_path: Path) -> Config:
    return Config(
        hosts=hosts,
        ssh_key=tmp_path / "id_ed25519",
        target_channel="beta",
        log_dir=tmp_path / "logs",
    )
