"""Signature records, signing state, and the canonical signed payload."""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from attest_engine.audit.chain import canonical_time

SIGNATURE_FORMAT_VERSION = 1
HASH_ALGORITHM = "sha256"


class SigningState(str, Enum):
    IDLE = "IDLE"
    HASHING = "HASHING"
    SIGNING = "SIGNING"
    TIMESTAMP_REQUESTED = "TIMESTAMP_REQUESTED"
    TIMESTAMP_VERIFYING = "TIMESTAMP_VERIFYING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SigningContext:
    reason: Optional[str] = None
    location: Optional[str] = None


@dataclass(frozen=True)
class TimestampVerification:
    """Outcome of checking an RFC 3161 token against a signature.

    ``verified`` means the imprint matches SHA-256 of the signature bytes and
    the TSA's CMS signature is valid. Chain validation is reported
    separately. Revocation is never checked, so ``tsa_ocsp_status`` is
    always None.
    """

    verified: bool
    gen_time: Optional[datetime] = None
    tsa_signer: Optional[str] = None
    tsa_cert_chain_validated: bool = False
    tsa_ocsp_status: Optional[str] = None
    policy: Optional[str] = None
    serial_number: Optional[int] = None
    message_imprint: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TimestampToken:
    token_der: bytes
    verification: TimestampVerification


@dataclass(frozen=True)
class SignatureRecord:
    document_hash: str
    signer_identity_id: str
    signature_bytes: bytes
    signer_fingerprint: str
    certificate_pem: str
    signed_at: datetime
    reason: Optional[str] = None
    location: Optional[str] = None
    timestamp: Optional[TimestampToken] = None

    def with_timestamp(self, token: TimestampToken) -> "SignatureRecord":
        return replace(self, timestamp=token)


@dataclass
class SigningResult:
    """What a signing attempt produced.

    ``state`` is COMPLETE for every returned result; a signature whose
    timestamp could not be obtained is COMPLETE with ``timestamp`` None and
    ``timestamp_error`` set.
    """

    signed_bytes: bytes
    record: SignatureRecord
    state: SigningState = SigningState.COMPLETE
    transitions: list[SigningState] = field(default_factory=list)
    timestamp_error: Optional[str] = None
    audit_entry: Optional[Any] = None

    @property
    def signature_bytes(self) -> bytes:
        return self.record.signature_bytes

    @property
    def timestamp(self) -> Optional[TimestampToken]:
        return self.record.timestamp

    @property
    def timestamp_verification(self) -> Optional[TimestampVerification]:
        return self.record.timestamp.verification if self.record.timestamp else None


@dataclass(frozen=True)
class SignatureVerification:
    valid: bool
    document_hash: Optional[str] = None
    identity_id: Optional[str] = None
    signer_fingerprint: Optional[str] = None
    certificate_pem: Optional[str] = None
    reason: Optional[str] = None
    location: Optional[str] = None
    signed_at: Optional[str] = None
    timestamp: Optional[TimestampVerification] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


def signing_payload(
    document_hash: str,
    identity_id: str,
    signer_fingerprint: str,
    signed_at: datetime | str,
    reason: Optional[str],
    location: Optional[str],
) -> bytes:
    """The exact bytes covered by the ECDSA signature."""
    return json.dumps(
        {
            "v": SIGNATURE_FORMAT_VERSION,
            "document_hash": document_hash,
            "identity_id": identity_id,
            "signer_fingerprint": signer_fingerprint,
            "signed_at": canonical_time(signed_at),
            "reason": reason,
            "location": location,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
