"""
RFC 3161 trusted timestamps over signature bytes.

Request:  TimeStampReq v1, SHA-256 imprint of the signature bytes, a random
          nonce, certReq=True.
Response: every check below must pass, otherwise TimestampError.
  - PKIStatus granted (or grantedWithMods)
  - TSTInfo message imprint equals SHA-256(signature bytes), nonce echoed
  - CMS signed attributes: content-type is id-ct-TSTInfo and message-digest
    matches the encapsulated TSTInfo
  - the TSA certificate carries the timeStamping extended key usage and its
    signature over the signed attributes verifies
  - with trust roots configured, the TSA certificate chains to one of them
    and every link was valid at genTime

Revocation (OCSP/CRL) is not checked.
"""

import hashlib
import logging
import secrets
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

import httpx
from asn1crypto import cms, core, tsp
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID

from attest_engine.common.exceptions import TimestampError
from attest_engine.signing.records import TimestampToken, TimestampVerification

logger = logging.getLogger(__name__)

TIMESTAMP_QUERY_CONTENT_TYPE = "application/timestamp-query"
TIMESTAMP_REPLY_CONTENT_TYPE = "application/timestamp-reply"
MAX_CHAIN_DEPTH = 8

_HASHES = {
    "sha1": hashes.SHA1,
    "sha224": hashes.SHA224,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


class TimestampAuthority(Protocol):
    """Transport to a TSA: DER request in, DER response out."""

    async def request(self, request_der: bytes) -> bytes: ...


class HttpTimestampAuthority:
    """RFC 3161 over HTTP POST."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def request(self, request_der: bytes) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            ) as client:
                resp = await client.post(
                    self.url,
                    content=request_der,
                    headers={
                        "Content-Type": TIMESTAMP_QUERY_CONTENT_TYPE,
                        "Accept": TIMESTAMP_REPLY_CONTENT_TYPE,
                    },
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise TimestampError(f"TSA request failed: {exc}") from exc
        logger.debug("TSA %s answered %d bytes", self.url, len(resp.content))
        return resp.content


# ── Request ──


def build_request(
    signature_bytes: bytes, nonce: Optional[int] = None,
) -> tuple[tsp.TimeStampReq, int]:
    """Build a TimeStampReq over SHA-256(signature_bytes). Returns (request, nonce)."""
    if nonce is None:
        nonce = secrets.randbits(63)
    request = tsp.TimeStampReq({
        "version": 1,
        "message_imprint": {
            "hash_algorithm": {"algorithm": "sha256"},
            "hashed_message": hashlib.sha256(signature_bytes).digest(),
        },
        "nonce": nonce,
        "cert_req": True,
    })
    return request, nonce


# ── Response ──


def verify_response(
    response_der: bytes,
    signature_bytes: bytes,
    nonce: Optional[int] = None,
    trust_roots: Sequence[x509.Certificate] = (),
) -> TimestampToken:
    """Parse and fully verify a TimeStampResp. Raises TimestampError."""
    try:
        response = tsp.TimeStampResp.load(response_der)
        status = response["status"]["status"].native
    except (ValueError, TypeError, KeyError) as exc:
        raise TimestampError(f"Unparseable TSA response: {exc}") from exc

    if status not in ("granted", "granted_with_mods"):
        text = " ".join(response["status"]["status_string"].native or [])
        raise TimestampError(f"TSA rejected the request: {status} {text}".strip())

    token = response["time_stamp_token"]
    if not isinstance(token, cms.ContentInfo):
        raise TimestampError("TSA response carries no timestamp token")

    token_der = token.dump()
    verification = verify_token(
        token_der, signature_bytes, expected_nonce=nonce, trust_roots=trust_roots,
        require_chain=bool(trust_roots),
    )
    return TimestampToken(token_der=token_der, verification=verification)


def verify_token(
    token_der: bytes,
    signature_bytes: bytes,
    expected_nonce: Optional[int] = None,
    trust_roots: Sequence[x509.Certificate] = (),
    require_chain: bool = False,
) -> TimestampVerification:
    """Verify a timestamp token (a CMS ContentInfo) over ``signature_bytes``.

    Raises TimestampError when the imprint, nonce, CMS signature, or (with
    ``require_chain``) the certificate chain does not check out.
    """
    try:
        return _verify_token(
            token_der, signature_bytes, expected_nonce, trust_roots, require_chain,
        )
    except TimestampError:
        raise
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        raise TimestampError(f"Malformed timestamp token: {exc}") from exc


def _verify_token(
    token_der: bytes,
    signature_bytes: bytes,
    expected_nonce: Optional[int],
    trust_roots: Sequence[x509.Certificate],
    require_chain: bool,
) -> TimestampVerification:
    token = cms.ContentInfo.load(token_der)
    if token["content_type"].native != "signed_data":
        raise TimestampError("Timestamp token is not CMS SignedData")
    signed_data = token["content"]

    encap = signed_data["encap_content_info"]
    if encap["content_type"].native != "tst_info":
        raise TimestampError("Timestamp token does not encapsulate a TSTInfo")
    tst_info = encap["content"].parsed
    tst_info_der = encap["content"].contents

    # Imprint must cover exactly these signature bytes
    imprint = tst_info["message_imprint"]
    imprint_alg = imprint["hash_algorithm"]["algorithm"].native
    if imprint_alg not in _HASHES:
        raise TimestampError(f"Unsupported imprint algorithm {imprint_alg}")
    expected_imprint = hashlib.new(imprint_alg, signature_bytes).digest()
    if imprint["hashed_message"].native != expected_imprint:
        raise TimestampError("Timestamp imprint does not match the signature")

    if expected_nonce is not None and tst_info["nonce"].native != expected_nonce:
        raise TimestampError("Timestamp nonce does not match the request")

    signer_infos = signed_data["signer_infos"]
    if len(signer_infos) != 1:
        raise TimestampError("Timestamp token must have exactly one signer")
    signer_info = signer_infos[0]

    digest_alg = signer_info["digest_algorithm"]["algorithm"].native
    if digest_alg not in _HASHES:
        raise TimestampError(f"Unsupported digest algorithm {digest_alg}")
    _check_signed_attributes(signer_info, digest_alg, tst_info_der)

    embedded = _token_certificates(signed_data)
    tsa_cert = _find_signer_certificate(signer_info, embedded)
    _check_timestamping_usage(tsa_cert)
    _check_signature(signer_info, digest_alg, tsa_cert)

    gen_time = tst_info["gen_time"].native
    chain_validated = False
    if trust_roots:
        chain_validated = _chain_validates(
            tsa_cert, [_load(c) for c in embedded], trust_roots, gen_time,
        )
        if require_chain and not chain_validated:
            raise TimestampError("TSA certificate does not chain to a trusted root")

    return TimestampVerification(
        verified=True,
        gen_time=gen_time,
        tsa_signer=tsa_cert.subject.rfc4514_string(),
        tsa_cert_chain_validated=chain_validated,
        tsa_ocsp_status=None,
        policy=tst_info["policy"].dotted,
        serial_number=tst_info["serial_number"].native,
        message_imprint=expected_imprint.hex(),
    )


def _check_signed_attributes(
    signer_info: cms.SignerInfo, digest_alg: str, tst_info_der: bytes,
) -> None:
    signed_attrs = signer_info["signed_attrs"]
    if isinstance(signed_attrs, core.Void) or not len(signed_attrs):
        raise TimestampError("Timestamp token has no signed attributes")

    content_type = message_digest = None
    for attr in signed_attrs:
        name = attr["type"].native
        if name == "content_type":
            content_type = attr["values"][0].native
        elif name == "message_digest":
            message_digest = attr["values"][0].native

    if content_type != "tst_info":
        raise TimestampError("Signed content-type attribute is not id-ct-TSTInfo")
    if message_digest != hashlib.new(digest_alg, tst_info_der).digest():
        raise TimestampError("Signed message-digest does not match the TSTInfo")


def _token_certificates(signed_data: cms.SignedData) -> list[asn1_x509.Certificate]:
    certificates = signed_data["certificates"]
    if isinstance(certificates, core.Void):
        return []
    return [c.chosen for c in certificates if c.name == "certificate"]


def _load(cert: asn1_x509.Certificate) -> x509.Certificate:
    return x509.load_der_x509_certificate(cert.dump())


def _find_signer_certificate(
    signer_info: cms.SignerInfo, certificates: list[asn1_x509.Certificate],
) -> x509.Certificate:
    sid = signer_info["sid"]
    for cert in certificates:
        if sid.name == "issuer_and_serial_number":
            if (cert.serial_number == sid.chosen["serial_number"].native
                    and cert.issuer == sid.chosen["issuer"]):
                return _load(cert)
        elif sid.name == "subject_key_identifier":
            if cert.key_identifier == sid.chosen.native:
                return _load(cert)
    raise TimestampError("TSA certificate not included in the timestamp token")


def _check_timestamping_usage(cert: x509.Certificate) -> None:
    try:
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound as exc:
        raise TimestampError("TSA certificate has no extended key usage") from exc
    if ExtendedKeyUsageOID.TIME_STAMPING not in eku:
        raise TimestampError("TSA certificate is not authorised for timestamping")


def _check_signature(
    signer_info: cms.SignerInfo, digest_alg: str, cert: x509.Certificate,
) -> None:
    # Signed over the DER SET OF, not the [0] IMPLICIT form stored in the token
    signed_attrs_der = signer_info["signed_attrs"].dump()
    signed_attrs_der = b"\x31" + signed_attrs_der[1:]
    signature = signer_info["signature"].native
    hash_alg = _HASHES[digest_alg]()
    sig_alg = signer_info["signature_algorithm"]["algorithm"].native

    public_key = cert.public_key()
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            if sig_alg == "rsassa_pss":
                pad = padding.PSS(mgf=padding.MGF1(hash_alg), salt_length=padding.PSS.AUTO)
            else:
                pad = padding.PKCS1v15()
            public_key.verify(signature, signed_attrs_der, pad, hash_alg)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, signed_attrs_der, ec.ECDSA(hash_alg))
        else:
            raise TimestampError(f"Unsupported TSA key type {type(public_key).__name__}")
    except InvalidSignature as exc:
        raise TimestampError("TSA signature does not verify") from exc


def _valid_at(cert: x509.Certificate, when: datetime) -> bool:
    return cert.not_valid_before_utc <= when <= cert.not_valid_after_utc


def _chain_validates(
    leaf: x509.Certificate,
    intermediates: Iterable[x509.Certificate],
    trust_roots: Sequence[x509.Certificate],
    at: datetime,
) -> bool:
    """Walk issuer links from ``leaf`` to any trust root, checking each
    signature and validity window at ``at``."""
    pool = [c for c in intermediates if c != leaf]
    current = leaf
    for _ in range(MAX_CHAIN_DEPTH):
        if not _valid_at(current, at):
            return False
        if current in trust_roots:
            return True
        for root in trust_roots:
            if root.subject == current.issuer and _issued_by(current, root):
                return _valid_at(root, at)
        issuer = next(
            (c for c in pool if c.subject == current.issuer and _issued_by(current, c)),
            None,
        )
        if issuer is None:
            return False
        pool.remove(issuer)
        current = issuer
    return False


def _issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True

