"""Process orchestration and synchronization harness for multi-peer Radicle Upstream tests."""

from upstream_devnet.errors import (
    DevnetError,
    OutOfRangeError,
    PeerNotRunningError,
    PrerequisiteError,
    ProcessFailedError,
    StartupTimeoutError,
    TeardownError,
)
from upstream_devnet.events import Event, EventSubscription, EventType
from upstream_devnet.identity import peer_id_from_key_seed
from upstream_devnet.peer_config import PeerConfig, get_proxy_env, make_peer_config
from upstream_devnet.peer_runner import PeerState, UpstreamPeer
from upstream_devnet.process import ExitResult, ProcessSupervisor, StdioMode, SupervisedProcess
from upstream_devnet.retry import retry, retry_on_error

__version__ = "0.1.0"

__all__ = [
    "DevnetError",
    "Event",
    "EventSubscription",
    "EventType",
    "ExitResult",
    "OutOfRangeError",
    "PeerConfig",
    "PeerNotRunningError",
    "PeerState",
    "PrerequisiteError",
    "ProcessFailedError",
    "ProcessSupervisor",
    "StartupTimeoutError",
    "StdioMode",
    "SupervisedProcess",
    "TeardownError",
    "UpstreamPeer",
    "get_proxy_env",
    "make_peer_config",
    "peer_id_from_key_seed",
    "retry",
    "retry_on_error",
]
