"""
Signing engine — hash, sign, embed, timestamp, and audit one document.

    IDLE → HASHING → SIGNING → [TIMESTAMP_REQUESTED → TIMESTAMP_VERIFYING]
         → COMPLETE | FAILED

Nothing observable happens before the signature bytes exist, so a
cancelled or failed attempt up to that point leaves no trace. From then on
the rest of the attempt (container, timestamp, audit entry) runs shielded
from cancellation: a signature that was produced is always recorded.

A timestamp failure never fails the signature; the result is COMPLETE with
``timestamp`` None and ``timestamp_error`` set.
"""

import asyncio
import base64
import binascii
import hashlib
import logging
from typing import Awaitable, Callable, Optional, Sequence

import httpx
from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from attest_engine.audit.chain import canonical_time
from attest_engine.audit.details import AuditAction, DocumentSignedDetails, Provenance
from attest_engine.audit.service import AuditChain
from attest_engine.common.exceptions import (
    AttestError,
    RevokedIdentityError,
    SignatureContainerError,
    SigningError,
    TimestampError,
)
from attest_engine.common.models import utcnow
from attest_engine.signing.container import (
    SignatureContainer,
    SignatureEnvelope,
    TrailerContainer,
)
from attest_engine.signing.records import (
    HASH_ALGORITHM,
    SignatureRecord,
    SignatureVerification,
    SigningContext,
    SigningResult,
    SigningState,
    TimestampToken,
    TimestampVerification,
    signing_payload,
)
from attest_engine.signing.timestamp import (
    TimestampAuthority,
    build_request,
    verify_response,
    verify_token,
)
from attest_engine.vault.crypto import MasterKey, require_master_key
from attest_engine.vault.identity import SigningIdentity, certificate_fingerprint
from attest_engine.vault.keyvault import KeyVault

logger = logging.getLogger(__name__)

RevocationCheck = Callable[[SigningIdentity], Awaitable[bool]]


class _Attempt:
    """State history of one signing attempt."""

    def __init__(self):
        self.transitions = [SigningState.IDLE]

    @property
    def state(self) -> SigningState:
        return self.transitions[-1]

    def advance(self, state: SigningState) -> None:
        self.transitions.append(state)


class SigningEngine:
    """Produces signed documents from a document buffer and an identity."""

    def __init__(
        self,
        vault: KeyVault,
        audit: Optional[AuditChain] = None,
        container: Optional[SignatureContainer] = None,
        tsa: Optional[TimestampAuthority] = None,
        tsa_timeout: float = 10.0,
        trust_roots: Sequence[x509.Certificate] = (),
    ):
        self.vault = vault
        self.audit = audit
        self.container = container or TrailerContainer()
        self.tsa = tsa
        self.tsa_timeout = tsa_timeout
        self.trust_roots = list(trust_roots)

    async def sign(
        self,
        document: bytes,
        identity: SigningIdentity,
        master_key: Optional[MasterKey],
        context: Optional[SigningContext] = None,
        timestamp: bool = False,
        provenance: Optional[Provenance] = None,
        file_id: Optional[str] = None,
        revocation_check: Optional[RevocationCheck] = None,
    ) -> SigningResult:
        """Sign ``document`` with ``identity``.

        ``revocation_check`` re-reads the identity's current revocation
        state once the key is decrypted, immediately before signing.

        Raises:
            RevokedIdentityError: the identity is revoked (checked before
                any key material is touched and again before signing).
            MasterKeyMissingError: no unlocked master key.
            DecryptionError: the private key blob does not open.
            SigningError: the signature primitive failed.
            AppendConflictError: the audit entry could not be appended.
        """
        context = context or SigningContext()
        attempt = _Attempt()

        try:
            attempt.advance(SigningState.HASHING)
            document = bytes(document)  # private copy; caller mutation cannot stale the hash
            document_hash = hashlib.sha256(document).hexdigest()

            if identity.is_revoked:
                raise RevokedIdentityError(f"Signing identity {identity.id} is revoked")
            master_key = require_master_key(master_key)
            private_key = await asyncio.to_thread(
                self.vault.decrypt_private_key, identity, master_key,
            )
            if revocation_check is not None and await revocation_check(identity):
                raise RevokedIdentityError(f"Signing identity {identity.id} was revoked")

            attempt.advance(SigningState.SIGNING)
            record, envelope = self._sign(private_key, identity, document_hash, context)
        except AttestError as exc:
            attempt.advance(SigningState.FAILED)
            logger.warning("Signing with identity %s failed: %s", identity.id, exc.code)
            raise

        completion = asyncio.create_task(self._complete(
            document, identity, record, envelope, attempt, timestamp, provenance, file_id,
        ))
        try:
            return await asyncio.shield(completion)
        except asyncio.CancelledError:
            await completion
            raise

    def _sign(
        self,
        private_key: ec.EllipticCurvePrivateKey,
        identity: SigningIdentity,
        document_hash: str,
        context: SigningContext,
    ) -> tuple[SignatureRecord, SignatureEnvelope]:
        signed_at = utcnow()
        fingerprint = identity.fingerprint
        payload = signing_payload(
            document_hash, identity.id, fingerprint, signed_at,
            context.reason, context.location,
        )
        try:
            signature = private_key.sign(payload, ec.ECDSA(hashes.SHA256()))
            identity.public_key.verify(signature, payload, ec.ECDSA(hashes.SHA256()))
        except InvalidSignature as exc:
            raise SigningError("Private key does not match the identity certificate") from exc
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise SigningError(f"Signature primitive failed: {exc}") from exc

        record = SignatureRecord(
            document_hash=document_hash,
            signer_identity_id=identity.id,
            signature_bytes=signature,
            signer_fingerprint=fingerprint,
            certificate_pem=identity.certificate_pem,
            signed_at=signed_at,
            reason=context.reason,
            location=context.location,
        )
        envelope = SignatureEnvelope(
            identity_id=identity.id,
            document_hash=document_hash,
            signer_fingerprint=fingerprint,
            signed_at=canonical_time(signed_at),
            reason=context.reason,
            location=context.location,
            certificate_pem=identity.certificate_pem,
            signature=base64.b64encode(signature).decode("ascii"),
        )
        return record, envelope

    async def _complete(
        self,
        document: bytes,
        identity: SigningIdentity,
        record: SignatureRecord,
        envelope: SignatureEnvelope,
        attempt: _Attempt,
        timestamp: bool,
        provenance: Optional[Provenance],
        file_id: Optional[str],
    ) -> SigningResult:
        signed_bytes = self.container.embed(document, envelope)

        timestamp_error = None
        if timestamp:
            try:
                token = await self._timestamp(record.signature_bytes, attempt)
            except TimestampError as exc:
                timestamp_error = exc.message
                logger.warning(
                    "Document %s signed without timestamp: %s",
                    record.document_hash[:12], exc.message,
                )
            else:
                record = record.with_timestamp(token)
                signed_bytes = self.container.embed_timestamp(signed_bytes, token.token_der)

        audit_entry = None
        if self.audit is not None:
            try:
                audit_entry = await self.audit.append(
                    identity.owner_id,
                    AuditAction.DOCUMENT_SIGNED,
                    DocumentSignedDetails(
                        identity_id=identity.id,
                        document_hash=record.document_hash,
                        signer_fingerprint=record.signer_fingerprint,
                        reason=record.reason,
                        location=record.location,
                        timestamped=record.timestamp is not None,
                        file_id=file_id,
                    ),
                    provenance,
                )
            except AttestError:
                attempt.advance(SigningState.FAILED)
                logger.error(
                    "Document %s was signed but its audit entry could not be recorded",
                    record.document_hash[:12],
                )
                raise

        attempt.advance(SigningState.COMPLETE)
        logger.info(
            "Signed document %s with identity %s (timestamped=%s)",
            record.document_hash[:12], identity.id, record.timestamp is not None,
            extra={"identity_id": identity.id, "document_hash": record.document_hash},
        )
        return SigningResult(
            signed_bytes=signed_bytes,
            record=record,
            state=attempt.state,
            transitions=list(attempt.transitions),
            timestamp_error=timestamp_error,
            audit_entry=audit_entry,
        )

    async def _timestamp(self, signature: bytes, attempt: _Attempt) -> TimestampToken:
        if self.tsa is None:
            raise TimestampError("No timestamp authority configured")

        request, nonce = build_request(signature)
        attempt.advance(SigningState.TIMESTAMP_REQUESTED)
        try:
            response = await asyncio.wait_for(
                self.tsa.request(request.dump()), timeout=self.tsa_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TimestampError(
                f"TSA did not answer within {self.tsa_timeout:.1f}s"
            ) from exc
        except (OSError, httpx.HTTPError) as exc:
            raise TimestampError(f"TSA unreachable: {exc}") from exc

        attempt.advance(SigningState.TIMESTAMP_VERIFYING)
        return verify_response(response, signature, nonce, self.trust_roots)

    def verify(self, signed: bytes) -> SignatureVerification:
        return verify_signed_document(signed, self.trust_roots, self.container)


def verify_signed_document(
    signed: bytes,
    trust_roots: Sequence[x509.Certificate] = (),
    container: Optional[SignatureContainer] = None,
) -> SignatureVerification:
    """Check a signed document against the certificate it carries.

    Verification never raises for bad input; the reason is in ``error``.
    """
    container = container or TrailerContainer()
    try:
        document, envelope = container.extract(bytes(signed))
    except SignatureContainerError as exc:
        return SignatureVerification(valid=False, error=exc.message)

    facts = dict(
        document_hash=envelope.document_hash,
        identity_id=envelope.identity_id,
        signer_fingerprint=envelope.signer_fingerprint,
        certificate_pem=envelope.certificate_pem,
        reason=envelope.reason,
        location=envelope.location,
        signed_at=envelope.signed_at,
    )

    def failed(error: str, **extra) -> SignatureVerification:
        return SignatureVerification(valid=False, error=error, **facts, **extra)

    if envelope.hash_algorithm != HASH_ALGORITHM:
        return failed(f"Unsupported hash algorithm {envelope.hash_algorithm}")
    if hashlib.sha256(document).hexdigest() != envelope.document_hash:
        return failed("Document bytes do not match the signed hash")

    try:
        certificate = x509.load_pem_x509_certificate(envelope.certificate_pem.encode("ascii"))
        signature = base64.b64decode(envelope.signature, validate=True)
    except (ValueError, UnicodeEncodeError, binascii.Error):
        return failed("Embedded certificate or signature is unreadable")

    if certificate_fingerprint(certificate) != envelope.signer_fingerprint:
        return failed("Certificate fingerprint does not match")
    public_key = certificate.public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return failed("Certificate key is not an EC key")
    try:
        certificate.verify_directly_issued_by(certificate)
    except (ValueError, TypeError, InvalidSignature):
        return failed("Certificate is not validly self-signed")

    payload = signing_payload(
        envelope.document_hash, envelope.identity_id, envelope.signer_fingerprint,
        envelope.signed_at, envelope.reason, envelope.location,
    )
    try:
        public_key.verify(signature, payload, ec.ECDSA(hashes.SHA256()))
    except InvalidSignature:
        return failed("Signature does not verify")

    stamp = None
    if envelope.timestamp_token is not None:
        try:
            token_der = base64.b64decode(envelope.timestamp_token, validate=True)
            stamp = verify_token(token_der, signature, trust_roots=trust_roots)
        except (binascii.Error, ValueError, TimestampError) as exc:
            message = exc.message if isinstance(exc, TimestampError) else str(exc)
            return failed(
                f"Timestamp token does not verify: {message}",
                timestamp=TimestampVerification(verified=False, error=message),
            )

    return SignatureVerification(valid=True, timestamp=stamp, **facts)
