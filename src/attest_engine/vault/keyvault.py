"""
Key vault — generate, wrap, unwrap, and retire signing identities.

Pure cryptographic transforms: nothing here touches storage or the network.
The master key is passed in on every call; the vault never holds it.

Identities use ECDSA P-256 with a self-signed X.509 certificate:
- subject/issuer: CN="<issuer> User <owner id prefix>", O=<issuer>,
  OU=Attestations, UID=<owner id>. The identity name only ever leaves
  this module sealed under the master key.
- 5-year validity by default, random 128-bit serial
- BasicConstraints CA=false, KeyUsage digitalSignature + nonRepudiation
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from attest_engine.common.exceptions import (
    DecryptionError,
    InvalidIdentityNameError,
    KeyGenerationError,
)
from attest_engine.vault.crypto import (
    PURPOSE_NAME,
    PURPOSE_PRIVATE_KEY,
    Decrypted,
    MasterKey,
    associated_data,
    open_sealed,
    require_master_key,
    seal,
)
from attest_engine.vault.identity import SigningIdentity

logger = logging.getLogger(__name__)

ORGANIZATIONAL_UNIT = "Attestations"
DEFAULT_ISSUER = "Attest Engine"
DEFAULT_VALIDITY_DAYS = 1825
DEFAULT_NAME_MAX_LENGTH = 100
COMMON_NAME_MAX_BYTES = 64


def common_name_for(issuer: str, owner_id: str) -> str:
    """Certificate CN for an owner. Never derived from the identity name."""
    return f"{issuer} User {owner_id[:8]}"


def build_self_signed_certificate(
    private_key: ec.EllipticCurvePrivateKey,
    owner_id: str,
    issuer: str,
    validity_days: int = DEFAULT_VALIDITY_DAYS,
    now: Optional[datetime] = None,
) -> x509.Certificate:
    """Build a certificate binding the public key to owner and issuer."""
    now = now or datetime.now(timezone.utc)
    subject = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name_for(issuer, owner_id)),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, issuer),
        x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, ORGANIZATIONAL_UNIT),
        x509.NameAttribute(NameOID.USER_ID, owner_id),
    ])
    public_key = private_key.public_key()
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(public_key)
        .serial_number(uuid.uuid4().int)
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=True,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key),
            critical=False,
        )
    )
    return builder.sign(private_key, hashes.SHA256())


class KeyVault:
    """Create and unwrap signing identities under a caller-held master key."""

    def __init__(
        self,
        issuer: str = DEFAULT_ISSUER,
        validity_days: int = DEFAULT_VALIDITY_DAYS,
        name_max_length: int = DEFAULT_NAME_MAX_LENGTH,
    ):
        self.issuer = issuer
        self.validity_days = validity_days
        self.name_max_length = name_max_length

    # ── Create ──

    def create_identity(
        self,
        name: str,
        owner_id: str,
        issuer: Optional[str],
        master_key: Optional[MasterKey],
    ) -> SigningIdentity:
        """Generate a keypair and certificate; wrap the private key and name.

        Raises:
            MasterKeyMissingError: no unlocked master key was supplied.
            InvalidIdentityNameError: name is blank or too long, or the
                issuer does not fit in a certificate common name.
            KeyGenerationError: the key or certificate primitive failed.
        """
        master_key = require_master_key(master_key)
        name = self._validate_name(name)
        issuer = self._validate_issuer(issuer or self.issuer, owner_id)
        identity_id = str(uuid.uuid4())

        try:
            private_key = ec.generate_private_key(ec.SECP256R1())
            certificate = build_self_signed_certificate(
                private_key, owner_id, issuer, self.validity_days,
            )
            private_pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        except (UnsupportedAlgorithm, ValueError, TypeError) as exc:
            raise KeyGenerationError(f"Key generation failed: {exc}") from exc

        identity = SigningIdentity(
            id=identity_id,
            owner_id=owner_id,
            encrypted_name=seal(
                name.encode("utf-8"), master_key,
                associated_data(PURPOSE_NAME, identity_id),
            ),
            certificate_pem=certificate.public_bytes(serialization.Encoding.PEM).decode("ascii"),
            encrypted_private_key=seal(
                private_pem, master_key,
                associated_data(PURPOSE_PRIVATE_KEY, identity_id),
            ),
            created_at=datetime.now(timezone.utc),
        )
        logger.info("Generated signing identity %s for owner %s", identity_id, owner_id)
        return identity

    def _validate_name(self, name: str) -> str:
        if not name or not name.strip():
            raise InvalidIdentityNameError("Identity name must not be empty")
        if len(name) > self.name_max_length:
            raise InvalidIdentityNameError(
                f"Identity name must be {self.name_max_length} characters or less"
            )
        return name

    @staticmethod
    def _validate_issuer(issuer: str, owner_id: str) -> str:
        if len(common_name_for(issuer, owner_id).encode("utf-8")) > COMMON_NAME_MAX_BYTES:
            raise InvalidIdentityNameError(
                f"Issuer must fit a {COMMON_NAME_MAX_BYTES}-byte certificate common name"
            )
        return issuer

    # ── Unwrap ──

    def decrypt_identity_name(
        self, identity: SigningIdentity, master_key: Optional[MasterKey],
    ) -> str:
        return self.decrypt_string(
            identity.encrypted_name, master_key, PURPOSE_NAME, identity.id,
        )

    def try_decrypt_identity_name(
        self, identity: SigningIdentity, master_key: Optional[MasterKey],
    ) -> Decrypted[str]:
        """Per-item variant for batches: failures come back as values."""
        try:
            return Decrypted(value=self.decrypt_identity_name(identity, master_key))
        except DecryptionError as exc:
            logger.warning("Could not decrypt name of identity %s", identity.id)
            return Decrypted(error=exc)

    def decrypt_private_key(
        self, identity: SigningIdentity, master_key: Optional[MasterKey],
    ) -> ec.EllipticCurvePrivateKey:
        pem = open_sealed(
            identity.encrypted_private_key, master_key,
            associated_data(PURPOSE_PRIVATE_KEY, identity.id),
        )
        try:
            private_key = serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise DecryptionError("Decrypted private key is unreadable") from exc
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise DecryptionError("Decrypted private key is not an EC key")
        return private_key

    # ── Metadata helpers ──

    def encrypt_string(
        self, value: str, master_key: Optional[MasterKey], purpose: str, identity_id: str,
    ) -> str:
        return seal(value.encode("utf-8"), master_key, associated_data(purpose, identity_id))

    def decrypt_string(
        self, blob: str, master_key: Optional[MasterKey], purpose: str, identity_id: str,
    ) -> str:
        raw = open_sealed(blob, master_key, associated_data(purpose, identity_id))
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted value is not valid UTF-8") from exc

    # ── Retire ──

    @staticmethod
    def revoke(identity: SigningIdentity, at: Optional[datetime] = None) -> SigningIdentity:
        """Mark an identity revoked. Revoking twice returns it unchanged."""
        if identity.is_revoked:
            return identity
        return replace(identity, revoked_at=at or datetime.now(timezone.utc))
