"""Tests for settings parsing and production checks."""

import json
import logging
import sys

import pytest
from cryptography.hazmat.primitives import serialization

from attest_engine.common.config import AttestSettings
from attest_engine.common.exceptions import AppendConflictError
from attest_engine.common.logging import JSONFormatter

from tests.conftest import make_ca


class TestTrustRoots:
    def test_empty(self):
        settings = AttestSettings(tsa_trust_roots="")
        assert settings.tsa_trust_root_paths == []
        assert settings.tsa_trust_root_certificates == []

    def test_comma_separated(self):
        settings = AttestSettings(tsa_trust_roots="/a.pem, /b.pem,")
        assert settings.tsa_trust_root_paths == ["/a.pem", "/b.pem"]

    def test_json_list(self):
        settings = AttestSettings(tsa_trust_roots='["/a.pem", "/b.pem"]')
        assert settings.tsa_trust_root_paths == ["/a.pem", "/b.pem"]

    def test_bad_json(self):
        with pytest.raises(ValueError):
            AttestSettings(tsa_trust_roots="[not json").tsa_trust_root_paths

    def test_loads_certificates(self, tmp_path):
        _, first = make_ca("Root One")
        _, second = make_ca("Root Two")
        bundle = tmp_path / "roots.pem"
        bundle.write_bytes(
            first.public_bytes(serialization.Encoding.PEM)
            + second.public_bytes(serialization.Encoding.PEM)
        )
        settings = AttestSettings(tsa_trust_roots=str(bundle))
        assert settings.tsa_trust_root_certificates == [first, second]

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("ATTEST_TSA_URL", "http://tsa.example/stamp")
        monkeypatch.setenv("ATTEST_TSA_TIMEOUT_SECONDS", "2.5")
        settings = AttestSettings()
        assert settings.tsa_url == "http://tsa.example/stamp"
        assert settings.tsa_timeout_seconds == 2.5


class TestProductionCheck:
    def test_insecure_default_rejected_outside_development(self):
        settings = AttestSettings(
            environment="production", api_key="insecure-admin-key-change-me",
        )
        with pytest.raises(RuntimeError, match="ATTEST_API_KEY"):
            settings.validate_for_production()

    def test_insecure_default_warns_in_development(self):
        settings = AttestSettings(api_key="insecure-admin-key-change-me")
        with pytest.warns(UserWarning):
            settings.validate_for_production()

    def test_secure_key_passes(self):
        AttestSettings(environment="production", api_key="s3cret").validate_for_production()


class TestJSONFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            "attest_engine.audit", logging.WARNING, __file__, 1,
            "append conflict on %s", ("user-1",), None,
        )
        record.__dict__.update(extra)
        return record

    def test_basic_fields(self):
        line = json.loads(JSONFormatter().format(self._record()))
        assert line["level"] == "WARNING"
        assert line["logger"] == "attest_engine.audit"
        assert line["message"] == "append conflict on user-1"

    def test_context_fields_only(self):
        line = json.loads(JSONFormatter().format(
            self._record(chain_id="user-1", attempt=2, master_key="should-not-appear"),
        ))
        assert line["chain_id"] == "user-1"
        assert line["attempt"] == 2
        assert "master_key" not in line

    def test_error_code_from_exception(self):
        try:
            raise AppendConflictError()
        except AppendConflictError:
            record = self._record()
            record.exc_info = sys.exc_info()
        line = json.loads(JSONFormatter().format(record))
        assert line["error_code"] == "APPEND_CONFLICT"
        assert "AppendConflictError" in line["exception"]
