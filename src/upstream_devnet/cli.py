"""Command-line interface for running devnet peers."""

import asyncio
import shutil
import sys
from typing import Coroutine

import click

from upstream_devnet.errors import OutOfRangeError
from upstream_devnet.observability import setup_logging
from upstream_devnet.peer_config import PeerConfig, get_proxy_env, make_peer_config
from upstream_devnet.process import ProcessSupervisor, StdioMode
from upstream_devnet.settings import Settings, get_settings


def _run(coro: Coroutine[None, None, None]) -> None:
    try:
        asyncio.run(coro)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
def cli():
    """Run and manage local Radicle Upstream peers."""
    pass


@cli.command()
@click.argument("peer_no", type=int)
@click.option("--headless", is_flag=True, help="Only run upstream-proxy and not the frontend")
def upstream(peer_no: int, headless: bool):
    """Run an upstream instance.

    PEER_NO identifies the instance and is used to derive the peer
    configuration. Must be between 1 and 99.
    """
    settings = get_settings()
    setup_logging(settings.log_level)
    _run(_run_upstream(peer_no, headless, settings))


async def _run_upstream(peer_no: int, headless: bool, settings: Settings) -> None:
    peer_config = make_peer_config(peer_no, settings.sandbox_path)
    proxy_env = get_proxy_env(peer_config, settings)

    async with ProcessSupervisor(stop_timeout=settings.stop_timeout_seconds) as supervisor:
        if headless:
            await supervisor.run(
                "cargo",
                ["run", "--bin=upstream-proxy", "--", "--unsafe-fast-keystore", "--dev-log"],
                env=proxy_env,
                stdio=StdioMode.INHERIT,
            )
        else:
            await supervisor.run("cargo", ["build", "--bin", "upstream-proxy"], stdio=StdioMode.INHERIT)
            await supervisor.run(
                "yarn",
                ["run", "electron", "./native/index.js"],
                env={
                    "NODE_ENV": "development",
                    "RADICLE_UPSTREAM_HTTP_PORT": str(peer_config.http_port),
                    **proxy_env,
                },
                stdio=StdioMode.INHERIT,
            )


@cli.command()
@click.argument("peer_no", type=int)
def reset(peer_no: int):
    """Delete all data for peer PEER_NO and re-initialize it."""
    settings = get_settings()
    setup_logging(settings.log_level)
    _run(_reset(peer_no, settings))


async def _reset(peer_no: int, settings: Settings) -> None:
    peer_config = make_peer_config(peer_no, settings.sandbox_path)
    shutil.rmtree(peer_config.data_home, ignore_errors=True)
    async with ProcessSupervisor(stop_timeout=settings.stop_timeout_seconds) as supervisor:
        await supervisor.run(
            "cargo",
            ["run", "--bin", "upstream-proxy-dev", "--", "init", peer_config.user_handle],
            env={"LNK_HOME": str(peer_config.data_home)},
            stdio=StdioMode.INHERIT,
        )


@cli.command()
@click.argument("peer_no", type=int)
def shell(peer_no: int):
    """Print a shell script that puts the radicle programs on the search path
    and has them use the identity and data of peer PEER_NO.

    Run this command as eval $(devnet shell 1)
    """
    settings = get_settings()
    try:
        peer_config = make_peer_config(peer_no, settings.sandbox_path)
    except OutOfRangeError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(shell_script(peer_config, settings))


def shell_script(peer_config: PeerConfig, settings: Settings) -> str:
    return "\n".join([
        f'export LNK_HOME="{peer_config.data_home}"',
        f'export PATH="{settings.bin_path}:$PATH"',
        "export RADICLE_UNSAFE_FAST_KEYSTORE=1",
    ])


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
