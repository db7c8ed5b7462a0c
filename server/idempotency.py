"""Idempotency keys for check-in attempts.

A retried request with the same (user, place, timestamp) must map to the same
key so the storage layer can deduplicate it. The hash is chosen when the
deriver is built; there is no run-time capability probing.
"""

import datetime
import hashlib

KEY_PREFIX = "idem-"
DEFAULT_KEY_LENGTH = 16            # hex characters

_FNV64_OFFSET_BASIS = 0xCBF29CE484222325
_FNV64_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fnv1a_hex(data: bytes) -> str:
    """64-bit FNV-1a, for builds without a cryptographic hash."""
    h = _FNV64_OFFSET_BASIS
    for byte in data:
        h ^= byte
        h = (h * _FNV64_PRIME) & _MASK_64
    return f"{h:016x}"


HASHERS = {
    "sha256": sha256_hex,
    "fnv1a": fnv1a_hex,
}


class IdempotencyKeyDeriver:
    def __init__(self, hasher: str = "sha256", length: int = DEFAULT_KEY_LENGTH, prefix: str = KEY_PREFIX):
        if hasher not in HASHERS:
            raise ValueError(f"Unknown hasher {hasher!r}; expected one of {sorted(HASHERS)}")
        digest_len = len(HASHERS[hasher](b""))
        if not 1 <= length <= digest_len:
            raise ValueError(f"length must be between 1 and {digest_len} for {hasher}, got {length}")
        self.hasher = hasher
        self.length = length
        self.prefix = prefix
        self._hash = HASHERS[hasher]

    def derive(self, user_id: str, place_id: str, timestamp) -> str:
        if isinstance(timestamp, datetime.datetime):
            timestamp = timestamp.isoformat()
        return self.prefix + self._hash(encode_fields(user_id, place_id, timestamp))[: self.length]


def encode_fields(*fields) -> bytes:
    """Length-prefixed encoding, ``<len>:<field>`` per field.

    Injective for any field contents, separators and control characters
    included.
    """
    return "".join(f"{len(s)}:{s}" for s in map(str, fields)).encode("utf-8")


DEFAULT_DERIVER = IdempotencyKeyDeriver()


def derive_key(user_id: str, place_id: str, timestamp) -> str:
    """Key for a check-in attempt using the default SHA-256 deriver."""
    return DEFAULT_DERIVER.derive(user_id, place_id, timestamp)
