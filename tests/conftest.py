"""Shared test fixtures for Attest-Engine."""

import asyncio
import hashlib
import itertools
import os
from datetime import datetime, timedelta, timezone

import pytest
from asn1crypto import algos, cms, tsp
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from httpx import ASGITransport, AsyncClient

API_KEY = "test-admin-api-key"
TSA_POLICY = "1.3.6.1.4.1.99999.1"


# ── Fake RFC 3161 timestamp authority ──


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def make_ca(common_name: str = "Test TSA Root"):
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(_name(common_name))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return key, cert


class FakeTSA:
    """In-process TSA producing real RFC 3161 responses.

    ``mode`` selects a misbehaviour: "ok", "wrong_imprint", "wrong_nonce",
    "bad_signature", "rejected", "network_error", "slow".
    """

    def __init__(self, mode: str = "ok", delay: float = 0.0):
        self.mode = mode
        self.delay = delay
        self.calls = 0
        self.called = asyncio.Event()
        self._serials = itertools.count(1000)

        self.root_key, self.root_cert = make_ca()
        self.key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.now(timezone.utc)
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(_name("Test TSA"))
            .issuer_name(self.root_cert.subject)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=365))
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.TIME_STAMPING]), critical=True,
            )
            .sign(self.root_key, hashes.SHA256())
        )
        self.asn1_cert = asn1_x509.Certificate.load(
            self.cert.public_bytes(serialization.Encoding.DER)
        )

    async def request(self, request_der: bytes) -> bytes:
        self.calls += 1
        self.called.set()
        if self.mode == "network_error":
            raise ConnectionError("TSA unreachable")
        if self.mode == "slow" or self.delay:
            await asyncio.sleep(self.delay or 5.0)
        return self.respond(request_der)

    def respond(self, request_der: bytes) -> bytes:
        req = tsp.TimeStampReq.load(request_der)
        if self.mode == "rejected":
            return tsp.TimeStampResp({
                "status": {"status": "rejection", "status_string": ["policy not supported"]},
            }).dump()

        hashed = req["message_imprint"]["hashed_message"].native
        if self.mode == "wrong_imprint":
            hashed = hashlib.sha256(b"some other signature").digest()
        nonce = req["nonce"].native
        if self.mode == "wrong_nonce":
            nonce = (nonce or 0) + 1

        tst_info = tsp.TSTInfo({
            "version": "v1",
            "policy": TSA_POLICY,
            "message_imprint": {
                "hash_algorithm": {"algorithm": "sha256"},
                "hashed_message": hashed,
            },
            "serial_number": next(self._serials),
            "gen_time": datetime.now(timezone.utc).replace(microsecond=0),
            "nonce": nonce,
        })
        tst_der = tst_info.dump()

        signed_attrs = cms.CMSAttributes([
            cms.CMSAttribute({"type": "content_type", "values": ["tst_info"]}),
            cms.CMSAttribute({
                "type": "message_digest", "values": [hashlib.sha256(tst_der).digest()],
            }),
        ])
        to_sign = signed_attrs.dump()
        if self.mode == "bad_signature":
            to_sign = to_sign + b"\x00"
        signature = self.key.sign(to_sign, ec.ECDSA(hashes.SHA256()))

        signer_info = cms.SignerInfo({
            "version": "v1",
            "sid": cms.SignerIdentifier(
                name="issuer_and_serial_number",
                value=cms.IssuerAndSerialNumber({
                    "issuer": self.asn1_cert.issuer,
                    "serial_number": self.asn1_cert.serial_number,
                }),
            ),
            "digest_algorithm": algos.DigestAlgorithm({"algorithm": "sha256"}),
            "signed_attrs": signed_attrs,
            "signature_algorithm": algos.SignedDigestAlgorithm({"algorithm": "sha256_ecdsa"}),
            "signature": signature,
        })
        signed_data = cms.SignedData({
            "version": "v3",
            "digest_algorithms": [algos.DigestAlgorithm({"algorithm": "sha256"})],
            "encap_content_info": {
                "content_type": "tst_info",
                "content": cms.ParsableOctetString(tst_der),
            },
            "certificates": [cms.CertificateChoices(name="certificate", value=self.asn1_cert)],
            "signer_infos": [signer_info],
        })
        token = cms.ContentInfo({"content_type": "signed_data", "content": signed_data})
        return tsp.TimeStampResp({
            "status": {"status": "granted"},
            "time_stamp_token": token,
        }).dump()


@pytest.fixture
def fake_tsa():
    return FakeTSA()


@pytest.fixture
def make_tsa():
    return FakeTSA


# ── Key material ──


@pytest.fixture
def master_key():
    from attest_engine.vault.crypto import MasterKey
    return MasterKey.generate()


@pytest.fixture
def other_master_key():
    from attest_engine.vault.crypto import MasterKey
    return MasterKey.generate()


@pytest.fixture
def vault():
    from attest_engine.vault.keyvault import KeyVault
    return KeyVault()


@pytest.fixture
def identity(vault, master_key):
    return vault.create_identity("Work", "user-1", None, master_key)


# ── Storage ──


@pytest.fixture
async def db():
    from attest_engine.common.config import AttestSettings
    from attest_engine.common.database import DatabaseManager

    manager = DatabaseManager(AttestSettings(db_url="sqlite+aiosqlite://"))
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def audit(db):
    from attest_engine.audit.service import AuditChain
    return AuditChain(db, max_attempts=5, backoff_base=0.001)


# ── API ──


@pytest.fixture
def app():
    """Create a test app with in-memory DB."""
    os.environ["ATTEST_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["ATTEST_API_KEY"] = API_KEY
    os.environ["ATTEST_TSA_URL"] = ""
    os.environ["ATTEST_TSA_TRUST_ROOTS"] = ""

    # Clear caches and singletons so new env vars take effect
    from attest_engine.common.config import get_settings
    get_settings.cache_clear()

    from attest_engine.deps import reset_singletons
    reset_singletons()

    from attest_engine.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from attest_engine.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-Attest-Api-Key": API_KEY}


@pytest.fixture
def session_headers(admin_headers, master_key):
    """Admin headers plus an unlocked master key."""
    return {**admin_headers, "X-Attest-Master-Key": master_key.to_b64()}
