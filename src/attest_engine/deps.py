"""Dependency injection singletons for Attest-Engine."""

from attest_engine.audit.service import AuditChain
from attest_engine.common.config import get_settings
from attest_engine.common.database import DatabaseManager
from attest_engine.signing.engine import SigningEngine
from attest_engine.signing.service import SigningService
from attest_engine.signing.timestamp import HttpTimestampAuthority
from attest_engine.vault.keyvault import KeyVault
from attest_engine.vault.service import IdentityService

_db: DatabaseManager | None = None
_audit: AuditChain | None = None
_vault: KeyVault | None = None
_identities: IdentityService | None = None
_engine: SigningEngine | None = None
_signing: SigningService | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_audit_chain() -> AuditChain:
    global _audit
    if _audit is None:
        settings = get_settings()
        _audit = AuditChain(
            get_db(),
            max_attempts=settings.audit_append_max_attempts,
            backoff_base=settings.audit_append_backoff_base,
        )
    return _audit


def get_key_vault() -> KeyVault:
    global _vault
    if _vault is None:
        settings = get_settings()
        _vault = KeyVault(
            issuer=settings.certificate_issuer,
            validity_days=settings.certificate_validity_days,
            name_max_length=settings.identity_name_max_length,
        )
    return _vault


def get_identity_service() -> IdentityService:
    global _identities
    if _identities is None:
        _identities = IdentityService(get_db(), get_key_vault(), get_audit_chain())
    return _identities


def get_signing_engine() -> SigningEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        tsa = None
        if settings.tsa_url:
            tsa = HttpTimestampAuthority(settings.tsa_url, timeout=settings.tsa_timeout_seconds)
        _engine = SigningEngine(
            get_key_vault(),
            audit=get_audit_chain(),
            tsa=tsa,
            tsa_timeout=settings.tsa_timeout_seconds,
            trust_roots=settings.tsa_trust_root_certificates,
        )
    return _engine


def get_signing_service() -> SigningService:
    global _signing
    if _signing is None:
        _signing = SigningService(get_db(), get_identity_service(), get_signing_engine())
    return _signing


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _audit, _vault, _identities, _engine, _signing
    _db = None
    _audit = None
    _vault = None
    _identities = None
    _engine = None
    _signing = None
