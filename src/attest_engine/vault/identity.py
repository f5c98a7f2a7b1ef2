"""Signing identity value type."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec


def certificate_fingerprint(certificate: x509.Certificate) -> str:
    """SHA-256 over the DER certificate, hex-encoded."""
    return certificate.fingerprint(hashes.SHA256()).hex()


@dataclass(frozen=True)
class SigningIdentity:
    """A keypair + self-signed certificate, with secrets held as AEAD blobs.

    ``encrypted_name`` and ``encrypted_private_key`` are ciphertext under the
    owner's master key. ``certificate_pem`` is public and may be exported.
    Instances are immutable; revocation returns a new instance.
    """

    id: str
    owner_id: str
    encrypted_name: str
    certificate_pem: str
    encrypted_private_key: str
    created_at: datetime
    revoked_at: Optional[datetime] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    @property
    def certificate(self) -> x509.Certificate:
        return x509.load_pem_x509_certificate(self.certificate_pem.encode("ascii"))

    @property
    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self.certificate.public_key()

    @property
    def fingerprint(self) -> str:
        return certificate_fingerprint(self.certificate)
