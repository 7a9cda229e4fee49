"""Deterministic peer identities."""

import hashlib

import multibase
from nacl.signing import SigningKey

# Type prefix of an Ed25519 public key in the peer ID encoding.
_PEER_ID_KEY_TYPE = b"\x00"


def peer_id_from_key_seed(seed: str) -> str:
    """Get a Peer ID from a private key seed.

    Uses the same algorithm as `upstream-proxy-dev init`: the SHA-256 digest of
    the seed is the Ed25519 key seed, and the public key is encoded as
    multibase base32z.
    """
    seed_digest = hashlib.sha256(seed.encode("utf-8")).digest()
    signing_key = SigningKey(seed_digest)
    public_key = bytes(signing_key.verify_key)
    return multibase.encode("base32z", _PEER_ID_KEY_TYPE + public_key).decode("utf-8")
