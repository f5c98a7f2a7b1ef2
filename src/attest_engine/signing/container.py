"""
Signature container — where a signature lives inside the signed file.

The trailer container appends one framed block after the document bytes.
The frame is made of PDF comment lines, so PDF readers ignore it:

    <document bytes>
    \\n%%ATTEST-SIGNATURE 1\\n
    %<76 base64 chars>\\n        (repeated)
    %%END-ATTEST-SIGNATURE\\n

The base64 payload is canonical JSON of a SignatureEnvelope. Extraction
re-encodes the parsed envelope and requires a byte-for-byte match with the
block, so any change to the block is rejected before the signature is even
checked. The bytes before the frame are exactly the bytes that were hashed.
"""

import base64
import binascii
import json
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

from attest_engine.common.exceptions import SignatureContainerError
from attest_engine.signing.records import HASH_ALGORITHM, SIGNATURE_FORMAT_VERSION

BEGIN_MARKER = b"\n%%ATTEST-SIGNATURE 1\n"
END_MARKER = b"%%END-ATTEST-SIGNATURE\n"
LINE_WIDTH = 76


class SignatureEnvelope(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    version: int = SIGNATURE_FORMAT_VERSION
    identity_id: str
    document_hash: str
    hash_algorithm: str = HASH_ALGORITHM
    signer_fingerprint: str
    signed_at: str
    reason: Optional[str] = None
    location: Optional[str] = None
    certificate_pem: str
    signature: str  # base64 DER ECDSA signature
    # Unsigned attribute: an RFC 3161 token over the signature bytes.
    timestamp_token: Optional[str] = None

    @property
    def signature_bytes(self) -> bytes:
        return base64.b64decode(self.signature)

    @property
    def timestamp_token_der(self) -> Optional[bytes]:
        if self.timestamp_token is None:
            return None
        return base64.b64decode(self.timestamp_token)


class SignatureContainer(Protocol):
    def embed(self, document: bytes, envelope: SignatureEnvelope) -> bytes: ...

    def extract(self, signed: bytes) -> tuple[bytes, SignatureEnvelope]: ...

    def embed_timestamp(self, signed: bytes, token_der: bytes) -> bytes: ...


def _encode_block(envelope: SignatureEnvelope) -> bytes:
    canonical = json.dumps(
        envelope.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    payload = base64.b64encode(canonical)
    lines = [b"%" + payload[i:i + LINE_WIDTH] for i in range(0, len(payload), LINE_WIDTH)]
    return BEGIN_MARKER + b"\n".join(lines) + b"\n" + END_MARKER


class TrailerContainer:
    """Append-only trailer block; see module docstring for the layout."""

    def embed(self, document: bytes, envelope: SignatureEnvelope) -> bytes:
        return bytes(document) + _encode_block(envelope)

    def extract(self, signed: bytes) -> tuple[bytes, SignatureEnvelope]:
        """Split signed bytes into (document, envelope).

        Raises:
            SignatureContainerError: no block, or a block that is not the
                canonical encoding of a valid envelope.
        """
        start = signed.rfind(BEGIN_MARKER)
        if start < 0:
            raise SignatureContainerError("No signature block found")
        document, block = signed[:start], signed[start:]
        if not block.endswith(END_MARKER):
            raise SignatureContainerError("Signature block is not terminated")

        body = block[len(BEGIN_MARKER):-len(END_MARKER)]
        if not body.endswith(b"\n"):
            raise SignatureContainerError("Signature block is malformed")
        lines = body[:-1].split(b"\n")
        if not all(line.startswith(b"%") for line in lines):
            raise SignatureContainerError("Signature block is malformed")

        try:
            raw = base64.b64decode(b"".join(line[1:] for line in lines), validate=True)
            envelope = SignatureEnvelope.model_validate(json.loads(raw.decode("utf-8")))
        except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as exc:
            raise SignatureContainerError(f"Signature block is unreadable: {exc}") from exc

        if envelope.version != SIGNATURE_FORMAT_VERSION:
            raise SignatureContainerError(
                f"Unsupported signature format version {envelope.version}"
            )
        if _encode_block(envelope) != block:
            raise SignatureContainerError("Signature block is not canonically encoded")
        return document, envelope

    def embed_timestamp(self, signed: bytes, token_der: bytes) -> bytes:
        """Attach a timestamp token; the document bytes are unchanged."""
        document, envelope = self.extract(signed)
        stamped = envelope.model_copy(
            update={"timestamp_token": base64.b64encode(token_der).decode("ascii")}
        )
        return self.embed(document, stamped)
