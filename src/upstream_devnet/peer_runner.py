"""Running peer daemons for end-to-end scenarios."""

from __future__ import annotations

import asyncio
import math
import os
import signal
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Union

from upstream_devnet.errors import PeerNotRunningError, StartupTimeoutError
from upstream_devnet.events import EventSubscription
from upstream_devnet.observability import get_logger
from upstream_devnet.peer_config import PeerConfig, get_proxy_env
from upstream_devnet.process import ExitResult, ProcessSupervisor, StdioMode, SupervisedProcess
from upstream_devnet.proxy_client import ProxyClient
from upstream_devnet.retry import retry_on_error
from upstream_devnet.settings import Settings, get_settings


class PeerState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class UpstreamPeer:
    """A peer daemon supervised for the duration of a scenario.

    Lifecycle: ``CREATED -> STARTING -> RUNNING -> STOPPED``. The control
    plane client and ``spawn`` are only available while running.
    """

    def __init__(self,
                 config: PeerConfig,
                 supervisor: ProcessSupervisor,
                 settings: Optional[Settings] = None,
                 *,
                 seeds: Optional[Sequence[str]] = None,
                 ssh_auth_sock: Optional[Union[str, Path]] = None) -> None:
        self.config = config
        self.settings = settings or get_settings()
        self.checkout_path = config.data_home / "checkouts"
        self.state = PeerState.CREATED
        self._supervisor = supervisor
        self._seeds = list(seeds) if seeds is not None else None
        self._ssh_auth_sock = None if ssh_auth_sock is None else str(ssh_auth_sock)
        self._process: Optional[SupervisedProcess] = None
        self._client: Optional[ProxyClient] = None
        self.logger = get_logger("upstream_devnet.peer").bind(peer=config.peer_number)

    @property
    def proxy_client(self) -> ProxyClient:
        if self.state != PeerState.RUNNING or self._client is None:
            raise PeerNotRunningError(f"Peer {self.config.peer_number} is {self.state.value}")
        return self._client

    @property
    def process(self) -> Optional[SupervisedProcess]:
        return self._process

    def _base_env(self) -> Dict[str, str]:
        base_path = self._supervisor.base_env.get("PATH", os.defpath)
        env = {
            "LNK_HOME": str(self.config.data_home),
            "PATH": os.pathsep.join([str(self.settings.bin_path), base_path]),
        }
        if self._ssh_auth_sock is not None:
            env["SSH_AUTH_SOCK"] = self._ssh_auth_sock
        return env

    def _spawn_env(self) -> Dict[str, str]:
        handle = self.config.user_handle
        return {
            **self._base_env(),
            "RADICLE_UNSAFE_FAST_KEYSTORE": "1",
            "GIT_AUTHOR_NAME": handle,
            "GIT_AUTHOR_EMAIL": f"{handle}@example.com",
            "GIT_COMMITTER_NAME": handle,
            "GIT_COMMITTER_EMAIL": f"{handle}@example.com",
        }

    async def init(self) -> None:
        """Create the peer identity in its data home."""
        command, *args = self.settings.proxy_init_command
        self.logger.info("Initializing peer identity", handle=self.config.user_handle)
        await self._supervisor.run(
            command, [*args, self.config.user_handle], env=self._base_env(), prefix=f"init-{self.config.peer_number}"
        )

    async def start(self) -> None:
        """Start the daemon and wait until its control plane responds."""
        if self.state != PeerState.CREATED:
            raise RuntimeError(f"Peer {self.config.peer_number} cannot be started when {self.state.value}")
        self.state = PeerState.STARTING
        self.logger.info("Starting peer", http_port=self.config.http_port, p2p_port=self.config.p2p_port)

        try:
            if not self.config.data_home.exists():
                await self.init()
            self.checkout_path.mkdir(parents=True, exist_ok=True)

            env = {**self._base_env(), **get_proxy_env(self.config, self.settings, self._seeds)}
            command, *args = self.settings.proxy_command
            self._process = await self._supervisor.spawn(
                command, args, cwd=self.checkout_path, env=env, prefix=f"proxy-{self.config.peer_number}"
            )
            self._process.add_exit_callback(self._on_exit)
            self._client = ProxyClient(f"http://{self.config.http_listen}")
            await self._wait_ready(self._process, self._client)
        except BaseException:
            await self.stop()
            raise

        self.state = PeerState.RUNNING
        self.logger.info("Peer running")

    async def _wait_ready(self, process: SupervisedProcess, client: ProxyClient) -> None:
        interval = self.settings.readiness_interval_seconds
        timeout = self.settings.readiness_timeout_seconds

        try:
            await retry_on_error(
                client.session,
                lambda _err: process.is_running,
                interval,
                max(1, math.ceil(timeout / interval)),
            )
        except Exception as err:
            reason = str(err) or type(err).__name__
            if not process.is_running:
                reason = f"daemon exited with code {process.returncode}"
            raise StartupTimeoutError(self.config.peer_number, timeout, reason) from err

    def _on_exit(self, process: SupervisedProcess) -> None:
        if self.state == PeerState.RUNNING:
            self.logger.warning("Peer daemon exited", returncode=process.returncode)
            self.state = PeerState.STOPPED

    async def stop(self) -> None:
        """Stop the daemon. Safe to call more than once."""
        if self.state == PeerState.STOPPED and self._process is None and self._client is None:
            return
        self.state = PeerState.STOPPED

        process, self._process = self._process, None
        if process is not None:
            process.kill(signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(check=False), self.settings.stop_timeout_seconds)
            except asyncio.TimeoutError:
                self.logger.warning("Peer daemon did not stop in time, killing it")
                process.kill(signal.SIGKILL)
                await process.wait(check=False)

        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
        self.logger.info("Peer stopped")

    async def spawn(self,
                    command: str,
                    args: Sequence[str] = (),
                    *,
                    cwd: Optional[Union[str, Path]] = None,
                    env: Optional[Mapping[str, str]] = None,
                    stdio: StdioMode = StdioMode.CAPTURE) -> ExitResult:
        """Run ``command`` with the peer's environment and wait for it.

        Runs in ``checkout_path`` unless ``cwd`` is given. Raises
        ``ProcessFailedError`` if the command exits with a non-zero code.
        """
        if self.state != PeerState.RUNNING:
            raise PeerNotRunningError(f"Peer {self.config.peer_number} is {self.state.value}")
        return await self._supervisor.run(
            command,
            args,
            cwd=cwd if cwd is not None else self.checkout_path,
            env={**self._spawn_env(), **(env or {})},
            stdio=stdio,
            prefix=f"peer-{self.config.peer_number}",
        )

    def events(self) -> EventSubscription:
        return self.proxy_client.events()
