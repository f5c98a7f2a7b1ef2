"""
AEAD wrapping of identity secrets under a session master key.

Blob format (base64, transmitted as one string):
    nonce (12 bytes) || ciphertext || Poly1305 tag (16 bytes)

Every call draws a fresh random nonce. Associated data binds a blob to its
purpose and owning identity, so a name ciphertext can never be replayed as a
private-key ciphertext (or moved to another identity) without failing
authentication.
"""

import base64
import binascii
import os
import secrets
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from attest_engine.common.exceptions import DecryptionError, MasterKeyMissingError

MASTER_KEY_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16

PURPOSE_NAME = "name"
PURPOSE_PRIVATE_KEY = "private-key"

T = TypeVar("T")


@dataclass(frozen=True, repr=False)
class MasterKey:
    """Session-scoped symmetric secret, unlocked and owned by the caller."""

    key: bytes

    def __post_init__(self):
        if not isinstance(self.key, bytes) or len(self.key) != MASTER_KEY_LEN:
            raise ValueError(f"Master key must be exactly {MASTER_KEY_LEN} bytes")

    def __repr__(self) -> str:
        return "MasterKey(<redacted>)"

    @classmethod
    def generate(cls) -> "MasterKey":
        return cls(secrets.token_bytes(MASTER_KEY_LEN))

    @classmethod
    def from_b64(cls, value: str) -> "MasterKey":
        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Master key is not valid base64") from exc
        return cls(raw)

    def to_b64(self) -> str:
        return base64.b64encode(self.key).decode("ascii")


@dataclass(frozen=True)
class Decrypted(Generic[T]):
    """Outcome of a per-item decryption: either a value or the error."""

    value: Optional[T] = None
    error: Optional[DecryptionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


def require_master_key(master_key: Optional[MasterKey]) -> MasterKey:
    if master_key is None:
        raise MasterKeyMissingError()
    return master_key


def associated_data(purpose: str, identity_id: str) -> bytes:
    return f"attest:{purpose}:{identity_id}".encode("utf-8")


def seal(plaintext: bytes, master_key: Optional[MasterKey], aad: bytes) -> str:
    """Encrypt under the master key with a fresh nonce; return the base64 blob."""
    key = require_master_key(master_key)
    nonce = os.urandom(NONCE_LEN)
    ciphertext = ChaCha20Poly1305(key.key).encrypt(nonce, plaintext, aad)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def open_sealed(blob: str, master_key: Optional[MasterKey], aad: bytes) -> bytes:
    """Decrypt a blob produced by ``seal``.

    Raises DecryptionError for a wrong key, truncated or corrupted data, or
    mismatched associated data. Never returns unauthenticated bytes.
    """
    key = require_master_key(master_key)
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptionError("Ciphertext is not valid base64") from exc

    if len(raw) < NONCE_LEN + TAG_LEN:
        raise DecryptionError("Ciphertext is truncated")

    nonce, ciphertext = raw[:NONCE_LEN], raw[NONCE_LEN:]
    try:
        return ChaCha20Poly1305(key.key).decrypt(nonce, ciphertext, aad)
    except InvalidTag as exc:
        raise DecryptionError("Authentication tag mismatch") from exc
