"""Harness settings and configuration."""

from pathlib import Path
from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Harness settings with environment variable support."""

    # Filesystem layout
    sandbox_path: Path = Field(default=Path("sandbox/devnet"), description="Root of all peer data homes")
    cargo_target_dir: Path = Field(
        default=Path("target"),
        validation_alias=AliasChoices("UPSTREAM_DEVNET_CARGO_TARGET_DIR", "CARGO_TARGET_DIR"),
        description="Cargo target directory containing the dev binaries",
    )

    # Seed server
    seed_url: str = Field(default="http://127.0.0.1:8778", description="Git seed URL")
    seed_address: str = Field(default="127.0.0.1:8778", description="Seed address for rad --seed")
    git_server_container: str = Field(default="upstream-git-server-test", description="Seed docker container")

    # Peer daemon
    key_passphrase: str = Field(default="asdf", description="Keystore passphrase for every peer")
    proxy_command: List[str] = Field(
        default=["upstream-proxy", "--unsafe-fast-keystore"],
        description="Command that runs a peer daemon",
    )
    proxy_init_command: List[str] = Field(
        default=["upstream-proxy-dev", "init"],
        description="Command that creates a peer identity, the user handle is appended",
    )
    rad_version_constraint: str = Field(default=">=0.4.0", description="Supported rad CLI versions")

    # Timeouts
    readiness_timeout_seconds: float = Field(default=10.0, description="Peer readiness budget")
    readiness_interval_seconds: float = Field(default=0.1, description="Readiness probe interval")
    stop_timeout_seconds: float = Field(default=5.0, description="Grace period before SIGKILL")
    ssh_agent_timeout_seconds: float = Field(default=5.0, description="ssh-agent socket wait")
    event_timeout_seconds: float = Field(default=10.0, description="Default event wait in scenarios")

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_prefix="UPSTREAM_DEVNET_",
        case_sensitive=False,
        populate_by_name=True,
    )

    @property
    def bin_path(self) -> Path:
        """Directory with the debug builds of the Radicle binaries."""
        return (self.cargo_target_dir / "debug").resolve()


def get_settings() -> Settings:
    """Get harness settings instance."""
    return Settings()
