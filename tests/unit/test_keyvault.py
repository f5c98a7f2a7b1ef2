"""Tests for signing identity generation and unwrapping."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from attest_engine.common.exceptions import (
    DecryptionError,
    InvalidIdentityNameError,
    MasterKeyMissingError,
)
from attest_engine.vault.keyvault import KeyVault


def _attr(cert: x509.Certificate, oid) -> str:
    return cert.subject.get_attributes_for_oid(oid)[0].value


class TestCreateIdentity:
    def test_certificate_fields(self, vault, master_key):
        identity = vault.create_identity("Work", "user-1", "Acme", master_key)
        cert = identity.certificate

        assert _attr(cert, NameOID.COMMON_NAME) == "Acme User user-1"
        assert _attr(cert, NameOID.ORGANIZATION_NAME) == "Acme"
        assert _attr(cert, NameOID.ORGANIZATIONAL_UNIT_NAME) == "Attestations"
        assert _attr(cert, NameOID.USER_ID) == "user-1"
        assert cert.issuer == cert.subject
        assert isinstance(cert.public_key().curve, ec.SECP256R1)
        assert (cert.not_valid_after_utc - cert.not_valid_before_utc).days == 1825

        basic = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        assert basic.ca is False
        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert usage.digital_signature and usage.content_commitment

    def test_name_never_reaches_certificate(self, vault, master_key):
        name = "Secret Project Falcon"
        identity = vault.create_identity(name, "user-1", None, master_key)
        assert name not in identity.certificate_pem
        assert name not in identity.certificate.subject.rfc4514_string()
        assert name not in identity.certificate.issuer.rfc4514_string()

    def test_common_name_uses_owner_prefix(self, vault, master_key):
        identity = vault.create_identity("Work", "0123456789abcdef", None, master_key)
        cn = _attr(identity.certificate, NameOID.COMMON_NAME)
        assert cn == "Attest Engine User 01234567"

    def test_certificate_is_self_signed(self, identity):
        cert = identity.certificate
        cert.verify_directly_issued_by(cert)

    def test_default_issuer(self, vault, master_key):
        identity = vault.create_identity("Work", "user-1", None, master_key)
        assert _attr(identity.certificate, NameOID.ORGANIZATION_NAME) == "Attest Engine"

    def test_custom_validity(self, master_key):
        vault = KeyVault(validity_days=30)
        cert = vault.create_identity("Short", "u", None, master_key).certificate
        assert (cert.not_valid_after_utc - cert.not_valid_before_utc).days == 30

    def test_blobs_are_not_plaintext(self, identity):
        assert "Work" not in identity.encrypted_name
        assert "PRIVATE KEY" not in identity.encrypted_private_key

    def test_unique_ids_and_serials(self, vault, master_key):
        a = vault.create_identity("A", "u", None, master_key)
        b = vault.create_identity("B", "u", None, master_key)
        assert a.id != b.id
        assert a.certificate.serial_number != b.certificate.serial_number

    def test_missing_master_key(self, vault):
        with pytest.raises(MasterKeyMissingError):
            vault.create_identity("Work", "user-1", None, None)

    @pytest.mark.parametrize("name", ["", "   "])
    def test_blank_name(self, vault, master_key, name):
        with pytest.raises(InvalidIdentityNameError):
            vault.create_identity(name, "user-1", None, master_key)

    def test_name_too_long(self, vault, master_key):
        with pytest.raises(InvalidIdentityNameError):
            vault.create_identity("x" * 101, "user-1", None, master_key)
        assert vault.create_identity("x" * 100, "user-1", None, master_key)

    @pytest.mark.parametrize("name", ["文" * 30, "文" * 100, "Ünïcödé ñame", "🔏" * 40])
    def test_non_ascii_names(self, vault, master_key, name):
        identity = vault.create_identity(name, "user-1", None, master_key)
        assert vault.decrypt_identity_name(identity, master_key) == name

    def test_issuer_too_long_for_common_name(self, vault, master_key):
        with pytest.raises(InvalidIdentityNameError):
            vault.create_identity("Work", "user-1", "i" * 60, master_key)
        with pytest.raises(InvalidIdentityNameError):
            vault.create_identity("Work", "user-1", "發" * 18, master_key)

    def test_issuer_at_common_name_limit(self, vault, master_key):
        issuer = "i" * (64 - len(" User user-1"))
        identity = vault.create_identity("Work", "user-1", issuer, master_key)
        assert _attr(identity.certificate, NameOID.ORGANIZATION_NAME) == issuer


class TestUnwrap:
    def test_decrypt_name(self, vault, identity, master_key):
        assert vault.decrypt_identity_name(identity, master_key) == "Work"

    def test_private_key_matches_certificate(self, vault, identity, master_key):
        private_key = vault.decrypt_private_key(identity, master_key)
        signature = private_key.sign(b"payload", ec.ECDSA(hashes.SHA256()))
        identity.public_key.verify(signature, b"payload", ec.ECDSA(hashes.SHA256()))

    def test_wrong_master_key(self, vault, identity, other_master_key):
        with pytest.raises(DecryptionError):
            vault.decrypt_private_key(identity, other_master_key)
        with pytest.raises(DecryptionError):
            vault.decrypt_identity_name(identity, other_master_key)

    def test_name_blob_cannot_stand_in_for_key(self, vault, identity, master_key):
        swapped = replace(identity, encrypted_private_key=identity.encrypted_name)
        with pytest.raises(DecryptionError):
            vault.decrypt_private_key(swapped, master_key)

    def test_blob_cannot_move_between_identities(self, vault, identity, master_key):
        other = vault.create_identity("Home", "user-1", None, master_key)
        moved = replace(other, encrypted_private_key=identity.encrypted_private_key)
        with pytest.raises(DecryptionError):
            vault.decrypt_private_key(moved, master_key)

    def test_try_decrypt_name(self, vault, identity, master_key, other_master_key):
        assert vault.try_decrypt_identity_name(identity, master_key).value == "Work"
        failed = vault.try_decrypt_identity_name(identity, other_master_key)
        assert not failed.ok
        assert isinstance(failed.error, DecryptionError)

    def test_string_helpers(self, vault, master_key):
        blob = vault.encrypt_string("note", master_key, "memo", "id-1")
        assert vault.decrypt_string(blob, master_key, "memo", "id-1") == "note"
        with pytest.raises(DecryptionError):
            vault.decrypt_string(blob, master_key, "memo", "id-2")


class TestRevoke:
    def test_revoke_sets_timestamp(self, identity):
        at = datetime(2026, 1, 2, tzinfo=timezone.utc)
        revoked = KeyVault.revoke(identity, at)
        assert revoked.is_revoked
        assert revoked.revoked_at == at
        assert not identity.is_revoked

    def test_revoke_is_idempotent(self, identity):
        first = KeyVault.revoke(identity)
        second = KeyVault.revoke(first, first.revoked_at + timedelta(days=1))
        assert second is first

    def test_revoked_identity_still_decrypts(self, vault, identity, master_key):
        revoked = KeyVault.revoke(identity)
        assert vault.decrypt_private_key(revoked, master_key)
        assert vault.decrypt_identity_name(revoked, master_key) == "Work"
