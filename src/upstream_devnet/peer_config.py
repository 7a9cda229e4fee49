"""Deterministic per-peer configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

from upstream_devnet.errors import OutOfRangeError
from upstream_devnet.identity import peer_id_from_key_seed
from upstream_devnet.settings import Settings, get_settings

HTTP_BASE_PORT = 24500
P2P_BASE_PORT = 24600


@dataclass(frozen=True)
class PeerConfig:
    """Runtime configuration derived from a peer number."""
    peer_number: int
    user_handle: str
    peer_id: str
    http_port: int
    p2p_port: int
    # Absolute path to LNK_HOME
    data_home: Path

    @property
    def http_listen(self) -> str:
        return f"127.0.0.1:{self.http_port}"

    @property
    def p2p_listen(self) -> str:
        return f"127.0.0.1:{self.p2p_port}"


def make_peer_config(peer_number: int, sandbox_path: Optional[Path] = None) -> PeerConfig:
    """Resolve a peer number into its configuration.

    Ports are fixed offsets from the peer number, so the same number must not
    be used by two scenarios running on one machine at the same time.
    """
    if not 0 < peer_number < 100:
        raise OutOfRangeError(peer_number)
    if sandbox_path is None:
        sandbox_path = get_settings().sandbox_path
    data_home = Path(sandbox_path, str(peer_number), "lnk_home").resolve()
    return PeerConfig(
        peer_number=peer_number,
        user_handle=str(peer_number),
        peer_id=peer_id_from_key_seed(str(peer_number)),
        http_port=HTTP_BASE_PORT + peer_number,
        p2p_port=P2P_BASE_PORT + peer_number,
        data_home=data_home,
    )


def get_proxy_env(config: PeerConfig,
                  settings: Optional[Settings] = None,
                  seeds: Optional[Sequence[str]] = None) -> Dict[str, str]:
    """Environment for the peer daemon of ``config``."""
    settings = settings or get_settings()
    if seeds is None:
        seeds = [settings.seed_url]
    return {
        "LNK_HOME": str(config.data_home),
        "RADICLE_PROXY_HTTP_LISTEN": config.http_listen,
        "RADICLE_PROXY_PEER_LISTEN": config.p2p_listen,
        "RADICLE_PROXY_KEY_PASSPHRASE": settings.key_passphrase,
        "RADICLE_PROXY_GIT_SEEDS": ",".join(seeds),
    }
