"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

from upstream_devnet.process import ProcessSupervisor
from upstream_devnet.settings import Settings

FAKE_PROXY = [sys.executable, "-m", "upstream_devnet.testing.fake_proxy"]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings that run peers with the fake proxy inside ``tmp_path``."""
    return Settings(
        sandbox_path=tmp_path / "devnet",
        cargo_target_dir=tmp_path / "target",
        proxy_command=[*FAKE_PROXY, "serve", "--unsafe-fast-keystore"],
        proxy_init_command=[*FAKE_PROXY, "init"],
        readiness_timeout_seconds=20.0,
        stop_timeout_seconds=3.0,
    )


@pytest.fixture
async def supervisor():
    """A process supervisor that tears down all children after the test."""
    async with ProcessSupervisor() as supervisor:
        yield supervisor
