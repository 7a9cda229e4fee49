"""Supervised child processes with signal forwarding.

A ``ProcessSupervisor`` owns every process the harness spawns. While it is
entered as an async context manager it handles SIGINT and SIGTERM for the
harness: the signal is forwarded to every live child, the scenario running
inside the block is cancelled and the children are awaited before the
supervisor is left, so no child outlives the harness.
"""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

from upstream_devnet.errors import ProcessFailedError, TeardownError
from upstream_devnet.observability import get_logger

logger = get_logger("upstream_devnet.process")

FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# Stream reader limit, `rad` can print long lines.
_STREAM_LIMIT = 1024 * 1024


class StdioMode(str, Enum):
    INHERIT = "inherit"
    CAPTURE = "capture"


@dataclass
class ExitResult:
    """Outcome of a finished process."""
    command: str
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


class SupervisedProcess:
    """A child process registered with a ``ProcessSupervisor``."""

    def __init__(self,
                 supervisor: ProcessSupervisor,
                 command: str,
                 args: Sequence[str],
                 process: asyncio.subprocess.Process,
                 prefix: Optional[str] = None) -> None:
        self.command = command
        self.args = list(args)
        self.forwarded_signals: Set[int] = set()
        self._supervisor = supervisor
        self._process = process
        self._prefix = prefix
        self._exit_task = asyncio.create_task(self._run())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return not self._exit_task.done() and self._process.returncode is None

    async def _run(self) -> ExitResult:
        stdout: List[str] = []
        stderr: List[str] = []
        try:
            readers = []
            if self._process.stdout is not None:
                readers.append(self._drain(self._process.stdout, stdout, "stdout"))
            if self._process.stderr is not None:
                readers.append(self._drain(self._process.stderr, stderr, "stderr"))
            await asyncio.gather(*readers)
            returncode = await self._process.wait()
        finally:
            self._supervisor._release(self)

        logger.debug("Process exited", command=self.command, pid=self.pid, returncode=returncode)
        return ExitResult(
            command=self.command,
            args=self.args,
            returncode=returncode,
            stdout="\n".join(stdout),
            stderr="\n".join(stderr),
        )

    async def _drain(self, stream: asyncio.StreamReader, sink: List[str], name: str) -> None:
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            sink.append(line)
            if self._prefix:
                logger.info(line, source=self._prefix, stream=name)

    async def wait(self, check: bool = True) -> ExitResult:
        """Wait for the process to exit.

        Raises ``ProcessFailedError`` for a non-zero exit code when ``check`` is
        set, except when the exit follows a signal forwarded by the supervisor.
        """
        result = await asyncio.shield(self._exit_task)
        if check and result.returncode != 0 and not self.forwarded_signals:
            raise ProcessFailedError(
                result.command, result.args, result.returncode, result.stdout, result.stderr
            )
        return result

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Send ``sig`` to the process. Does nothing once it has exited."""
        if not self.is_running:
            return
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            pass

    def forward(self, sig: int) -> None:
        """Forward a harness signal, at most once per signal type."""
        if sig in self.forwarded_signals or not self.is_running:
            return
        self.forwarded_signals.add(sig)
        logger.info("Forwarding signal", command=self.command, pid=self.pid, signal=signal.Signals(sig).name)
        self.kill(sig)

    def add_exit_callback(self, callback: Callable[[SupervisedProcess], None]) -> None:
        """Call ``callback`` with this process once it has exited."""
        self._exit_task.add_done_callback(lambda _task: callback(self))


class ProcessSupervisor:
    """Spawns child processes and guarantees their teardown.

    The first SIGINT or SIGTERM received while the supervisor is entered is
    forwarded to the children and cancels the task that entered it. Leaving
    the block after that cancellation is the graceful path: the children are
    awaited and the ``CancelledError`` is not propagated. A second signal
    kills the remaining children.
    """

    def __init__(self, base_env: Optional[Mapping[str, str]] = None, stop_timeout: float = 5.0) -> None:
        self._base_env: Dict[str, str] = dict(os.environ if base_env is None else base_env)
        self._processes: Set[SupervisedProcess] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._owner: Optional[asyncio.Task] = None
        self._cancelled_by_signal = False
        self.stop_timeout = stop_timeout
        self.shutdown_requested = False

    @property
    def base_env(self) -> Dict[str, str]:
        return dict(self._base_env)

    @property
    def processes(self) -> List[SupervisedProcess]:
        """Processes that have not exited yet."""
        return list(self._processes)

    async def __aenter__(self) -> ProcessSupervisor:
        self._owner = asyncio.current_task()
        self._cancelled_by_signal = False
        self.install_signal_handlers()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        owner, self._owner = self._owner, None
        try:
            await self.shutdown()
        finally:
            self.remove_signal_handlers()

        if self._cancelled_by_signal and exc_type is asyncio.CancelledError:
            logger.info("Shut down after signal")
            if owner is not None:
                owner.uncancel()
            return True
        return False

    def install_signal_handlers(self) -> None:
        if self._loop is not None:
            return
        loop = asyncio.get_running_loop()
        try:
            for sig in FORWARDED_SIGNALS:
                loop.add_signal_handler(sig, self._on_signal, sig)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            logger.warning("Signal forwarding is not supported on this platform")
            return
        self._loop = loop

    def remove_signal_handlers(self) -> None:
        if self._loop is None:
            return
        for sig in FORWARDED_SIGNALS:
            self._loop.remove_signal_handler(sig)
        self._loop = None

    def _on_signal(self, sig: int) -> None:
        if self.shutdown_requested:
            logger.warning("Received signal again, killing children",
                           signal=signal.Signals(sig).name,
                           children=len(self._processes))
            for process in list(self._processes):
                process.kill(signal.SIGKILL)
            return

        logger.info("Received signal, forwarding to children",
                    signal=signal.Signals(sig).name,
                    children=len(self._processes))
        self.shutdown_requested = True
        for process in list(self._processes):
            process.forward(sig)

        if self._owner is not None and not self._owner.done():
            self._cancelled_by_signal = True
            self._owner.cancel()

    def _release(self, process: SupervisedProcess) -> None:
        self._processes.discard(process)

    async def spawn(self,
                    command: str,
                    args: Sequence[str] = (),
                    *,
                    cwd: Optional[Union[str, Path]] = None,
                    env: Optional[Mapping[str, str]] = None,
                    stdio: StdioMode = StdioMode.CAPTURE,
                    prefix: Optional[str] = None) -> SupervisedProcess:
        """Start ``command`` with ``env`` merged over the base environment."""
        merged_env = {**self._base_env, **(env or {})}
        pipe = asyncio.subprocess.PIPE if stdio == StdioMode.CAPTURE else None
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=None if cwd is None else str(cwd),
            env=merged_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=pipe,
            stderr=pipe,
            limit=_STREAM_LIMIT,
        )
        supervised = SupervisedProcess(self, command, args, process, prefix=prefix)
        self._processes.add(supervised)
        logger.debug("Spawned process", command=command, args=list(args), pid=process.pid, cwd=str(cwd))
        return supervised

    async def run(self, command: str, args: Sequence[str] = (), **kwargs) -> ExitResult:
        """Spawn ``command`` and wait for it to exit successfully."""
        process = await self.spawn(command, args, **kwargs)
        return await process.wait()

    async def shutdown(self, sig: int = signal.SIGTERM, timeout: Optional[float] = None) -> None:
        """Signal every live child and wait for all of them to exit.

        Children that already received a forwarded signal are not signaled
        again. A child still running after ``timeout`` seconds (default
        ``stop_timeout``) is killed with SIGKILL. Failures of individual
        children do not stop the others from being signaled and awaited. They
        are raised together as ``TeardownError``.
        """
        processes = list(self._processes)
        if not processes:
            return
        timeout = self.stop_timeout if timeout is None else timeout
        logger.info("Shutting down processes", count=len(processes))

        errors: List[BaseException] = []
        for process in processes:
            if process.forwarded_signals:
                continue
            try:
                process.kill(sig)
            except Exception as err:
                errors.append(err)

        results = await asyncio.gather(
            *(self._reap(process, timeout) for process in processes),
            return_exceptions=True,
        )
        errors.extend(result for result in results if isinstance(result, BaseException))
        if errors:
            raise TeardownError(errors)

    async def _reap(self, process: SupervisedProcess, timeout: float) -> ExitResult:
        try:
            return await asyncio.wait_for(process.wait(check=False), timeout)
        except asyncio.TimeoutError:
            logger.warning("Process did not exit in time, killing it", command=process.command, pid=process.pid)
            process.kill(signal.SIGKILL)
            return await process.wait(check=False)
