"""Tests for the trailer signature container."""

import base64

import pytest

from attest_engine.common.exceptions import SignatureContainerError
from attest_engine.signing.container import (
    BEGIN_MARKER,
    END_MARKER,
    LINE_WIDTH,
    SignatureEnvelope,
    TrailerContainer,
)

DOCUMENT = b"%PDF-1.7\n1 0 obj\n<<>>\nendobj\n%%EOF\n"


@pytest.fixture
def envelope():
    return SignatureEnvelope(
        identity_id="id-1",
        document_hash="ab" * 32,
        signer_fingerprint="cd" * 32,
        signed_at="2026-03-01T12:00:00.000000Z",
        reason="approve",
        location="Berlin",
        certificate_pem="-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n",
        signature=base64.b64encode(b"\x30\x44" + b"\x01" * 68).decode(),
    )


@pytest.fixture
def container():
    return TrailerContainer()


class TestEmbed:
    def test_document_bytes_are_a_prefix(self, container, envelope):
        signed = container.embed(DOCUMENT, envelope)
        assert signed.startswith(DOCUMENT + BEGIN_MARKER)
        assert signed.endswith(END_MARKER)

    def test_lines_are_comments(self, container, envelope):
        signed = container.embed(DOCUMENT, envelope)
        block = signed[len(DOCUMENT) + len(BEGIN_MARKER):-len(END_MARKER)]
        for line in block.rstrip(b"\n").split(b"\n"):
            assert line.startswith(b"%")
            assert len(line) <= LINE_WIDTH + 1

    def test_extract(self, container, envelope):
        document, parsed = container.extract(container.embed(DOCUMENT, envelope))
        assert document == DOCUMENT
        assert parsed == envelope
        assert parsed.signature_bytes.startswith(b"\x30\x44")

    def test_empty_document(self, container, envelope):
        document, _ = container.extract(container.embed(b"", envelope))
        assert document == b""

    def test_document_containing_a_marker(self, container, envelope):
        tricky = DOCUMENT + BEGIN_MARKER + b"not a block"
        document, _ = container.extract(container.embed(tricky, envelope))
        assert document == tricky

    def test_embed_timestamp_keeps_document(self, container, envelope):
        signed = container.embed(DOCUMENT, envelope)
        stamped = container.embed_timestamp(signed, b"\x30\x03\x02\x01\x00")
        document, parsed = container.extract(stamped)
        assert document == DOCUMENT
        assert parsed.timestamp_token_der == b"\x30\x03\x02\x01\x00"
        assert parsed.signature == envelope.signature


class TestExtractRejects:
    def test_unsigned(self, container):
        with pytest.raises(SignatureContainerError, match="No signature block"):
            container.extract(DOCUMENT)

    def test_truncated(self, container, envelope):
        signed = container.embed(DOCUMENT, envelope)
        with pytest.raises(SignatureContainerError):
            container.extract(signed[:-5])

    def test_trailing_garbage(self, container, envelope):
        signed = container.embed(DOCUMENT, envelope)
        with pytest.raises(SignatureContainerError):
            container.extract(signed + b"appended")

    def test_altered_block_character(self, container, envelope):
        signed = bytearray(container.embed(DOCUMENT, envelope))
        index = len(DOCUMENT) + len(BEGIN_MARKER) + 10
        signed[index] = ord("A") if signed[index] != ord("A") else ord("B")
        with pytest.raises(SignatureContainerError):
            container.extract(bytes(signed))

    def test_non_canonical_block(self, container, envelope):
        payload = base64.b64encode(envelope.model_dump_json(indent=2).encode())
        block = BEGIN_MARKER + b"%" + payload + b"\n" + END_MARKER
        with pytest.raises(SignatureContainerError, match="canonical"):
            container.extract(DOCUMENT + block)

    def test_unknown_field(self, container, envelope):
        import json

        data = envelope.model_dump(mode="json")
        data["extra"] = "x"
        payload = base64.b64encode(
            json.dumps(data, sort_keys=True, separators=(",", ":")).encode()
        )
        block = BEGIN_MARKER + b"%" + payload + b"\n" + END_MARKER
        with pytest.raises(SignatureContainerError):
            container.extract(DOCUMENT + block)

    def test_unsupported_version(self, container, envelope):
        signed = container.embed(DOCUMENT, envelope.model_copy(update={"version": 2}))
        with pytest.raises(SignatureContainerError, match="version"):
            container.extract(signed)
