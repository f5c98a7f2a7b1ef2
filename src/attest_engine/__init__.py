"""Attest-Engine: client-held signing identities, document signatures, and a hash-chained audit log."""

from attest_engine.audit.chain import GENESIS_HASH, compute_entry_hash, ensure_chain_intact, verify_chain
from attest_engine.client import AttestationsClient
from attest_engine.signing.engine import SigningEngine, verify_signed_document
from attest_engine.signing.records import SigningContext
from attest_engine.vault.crypto import MasterKey
from attest_engine.vault.keyvault import KeyVault

__all__ = [
    "AttestationsClient",
    "GENESIS_HASH",
    "KeyVault",
    "MasterKey",
    "SigningContext",
    "SigningEngine",
    "compute_entry_hash",
    "ensure_chain_intact",
    "verify_chain",
    "verify_signed_document",
]
__version__ = "0.1.0"
