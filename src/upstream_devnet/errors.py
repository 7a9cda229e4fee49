"""Error types raised by the devnet harness."""

from __future__ import annotations

from typing import List, Optional, Sequence


class DevnetError(Exception):
    """Base class for harness errors."""


class OutOfRangeError(DevnetError, ValueError):
    """Raised when a peer number is outside the supported range."""

    def __init__(self, peer_number: int) -> None:
        super().__init__(f"Peer number {peer_number} is not in range (0, 100)")
        self.peer_number = peer_number


class ProcessFailedError(DevnetError):
    """A supervised process exited with a non-zero code."""

    def __init__(self,
                 command: str,
                 args: Sequence[str],
                 returncode: int,
                 stdout: str = "",
                 stderr: str = "") -> None:
        self.command = command
        self.arguments = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(self._format())

    def _format(self) -> str:
        cmdline = " ".join([self.command, *self.arguments])
        message = f"Command failed with exit code {self.returncode}: {cmdline}"
        if self.stdout:
            message += f"\nstdout:\n{self.stdout}"
        if self.stderr:
            message += f"\nstderr:\n{self.stderr}"
        return message


class StartupTimeoutError(DevnetError):
    """A peer daemon did not become ready in time."""

    def __init__(self, peer_number: int, timeout_seconds: float, reason: Optional[str] = None) -> None:
        message = f"Peer {peer_number} did not become ready within {timeout_seconds}s"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.peer_number = peer_number
        self.timeout_seconds = timeout_seconds


class TeardownError(DevnetError):
    """One or more supervised processes failed to shut down cleanly."""

    def __init__(self, errors: List[BaseException]) -> None:
        self.errors = list(errors)
        details = "; ".join(f"{type(err).__name__}: {err}" for err in self.errors)
        super().__init__(f"{len(self.errors)} process(es) failed during teardown: {details}")


class PeerNotRunningError(DevnetError):
    """The peer was used while its daemon is not running."""


class PrerequisiteError(DevnetError):
    """An external tool or service required by a scenario is unavailable."""
