"""Attest-Engine configuration via pydantic-settings."""

import json
import warnings
from functools import lru_cache
from pathlib import Path

from cryptography import x509
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
}


class AttestSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ATTEST_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/attest.db"

    # API
    api_title: str = "Attest-Engine"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8090
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]

    # Key vault
    certificate_issuer: str = "Attest Engine"
    certificate_validity_days: int = 1825  # 5 years
    identity_name_max_length: int = 100

    # Timestamping (RFC 3161)
    tsa_url: str = ""
    tsa_timeout_seconds: float = 10.0

    # PEM file paths of TSA trust anchors.
    # e.g. '["/etc/attest/tsa-root.pem"]' or '/a.pem,/b.pem'
    tsa_trust_roots: str = ""

    # Audit chain
    audit_append_max_attempts: int = 5
    audit_append_backoff_base: float = 0.05  # seconds, doubled per attempt

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    @property
    def tsa_trust_root_paths(self) -> list[str]:
        """Return configured trust-root paths.

        Accepts a JSON list or a comma-separated string.
        """
        raw = self.tsa_trust_roots.strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                paths = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ValueError(
                    f"ATTEST_TSA_TRUST_ROOTS must be a JSON list or comma-separated paths, got: {raw!r}"
                ) from exc
            return [str(p) for p in paths]
        return [p.strip() for p in raw.split(",") if p.strip()]

    @property
    def tsa_trust_root_certificates(self) -> list[x509.Certificate]:
        """Load every certificate found in the configured trust-root files."""
        certs: list[x509.Certificate] = []
        for path in self.tsa_trust_root_paths:
            data = Path(path).read_bytes()
            certs.extend(x509.load_pem_x509_certificates(data))
        return certs

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"ATTEST_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default API key — set ATTEST_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> AttestSettings:
    settings = AttestSettings()
    settings.validate_for_production()
    return settings
