"""
AttestationsClient — sync client for the remote attestations API.

The remote API stores what the engine produces and never sees plaintext:
encrypted identity blobs, audit log entries, and signed-document records.
Field names on the wire are camelCase.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from attest_engine.audit.chain import GENESIS_HASH, ChainVerification, verify_chain
from attest_engine.vault.identity import SigningIdentity


@dataclass
class RemoteIdentity:
    """An identity as the remote API stores it."""

    id: str
    encrypted_name: str
    public_key: str  # certificate PEM
    encrypted_private_key: str
    created_at: Optional[str] = None
    revoked_at: Optional[str] = None


@dataclass
class LogPage:
    """One page of remote audit logs, newest first."""

    logs: list[dict[str, Any]] = field(default_factory=list)
    page: int = 1
    total_pages: int = 1
    error: Optional[str] = None

    def verify(self, anchor_hash: Optional[str] = None) -> ChainVerification:
        """Verify this page's entries. Without an anchor the oldest entry's
        own ``previous_hash`` is trusted."""
        entries = list(reversed(self.logs))
        if anchor_hash is None:
            oldest = entries[0] if entries else None
            anchor_hash = oldest.get("previous_hash", GENESIS_HASH) if isinstance(oldest, dict) else GENESIS_HASH
        return verify_chain(entries, anchor_hash)


class AttestationsClient:
    """
    Synchronous HTTP client for the attestations API.

    Every call returns parsed data or, on failure, a structured error dict
    ``{"error": ..., "code": ...}``; nothing here raises on HTTP errors.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8090",
        token: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff_base: float = 0.5,
    ):
        self.server_url = server_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
            headers=headers,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Central HTTP method with retry and structured error handling.

        Retries timeouts, transport errors, 5xx, and 429 with exponential
        backoff. Other 4xx responses are returned as errors immediately.
        """
        last_error = None
        for attempt in range(self.max_retries):
            try:
                resp = getattr(self._http, method)(path, **kwargs)
                if resp.status_code >= 500 or resp.status_code == 429:
                    last_error = f"HTTP {resp.status_code}"
                    if attempt < self.max_retries - 1:
                        time.sleep(self.retry_backoff_base * (2 ** attempt))
                        continue
                    return {
                        "error": f"Server error: {resp.status_code}",
                        "code": "SERVER_ERROR",
                    }
                if resp.status_code >= 400:
                    return {
                        "error": f"Client error: {resp.status_code}",
                        "code": "CLIENT_ERROR",
                    }
                if resp.status_code == 204 or not resp.content:
                    return {}
                return resp.json()
            except httpx.TimeoutException:
                last_error = "timeout"
            except httpx.HTTPError as e:
                last_error = str(e)
            except json.JSONDecodeError:
                return {"error": "Invalid JSON response", "code": "JSON_ERROR"}
            if attempt < self.max_retries - 1:
                time.sleep(self.retry_backoff_base * (2 ** attempt))

        return {
            "error": f"All {self.max_retries} retries exhausted: {last_error}",
            "code": "CONNECTION_ERROR",
        }

    @staticmethod
    def _is_error(data: Any) -> bool:
        return isinstance(data, dict) and "error" in data and "code" in data

    # ── Identities ──

    def list_identities(self) -> list[RemoteIdentity] | dict[str, Any]:
        data = self._request("get", "/attestations/keys")
        if self._is_error(data):
            return data
        return [
            RemoteIdentity(
                id=item.get("id", ""),
                encrypted_name=item.get("encryptedName", ""),
                public_key=item.get("publicKey", ""),
                encrypted_private_key=item.get("encryptedPrivateKey", ""),
                created_at=item.get("createdAt"),
                revoked_at=item.get("revokedAt"),
            )
            for item in data
        ]

    def create_identity(
        self, encrypted_name: str, public_key: str, encrypted_private_key: str,
    ) -> dict[str, Any]:
        return self._request("post", "/attestations/keys", json={
            "encryptedName": encrypted_name,
            "publicKey": public_key,
            "encryptedPrivateKey": encrypted_private_key,
        })

    def upload_identity(self, identity: SigningIdentity) -> dict[str, Any]:
        """Store a freshly generated identity; only ciphertext and the
        public certificate leave this process."""
        return self.create_identity(
            identity.encrypted_name, identity.certificate_pem, identity.encrypted_private_key,
        )

    def delete_identity(self, identity_id: str) -> bool:
        data = self._request("delete", f"/attestations/keys/{identity_id}")
        return not self._is_error(data)

    # ── Audit logs ──

    def get_logs(self, page: int = 1, limit: int = 10) -> LogPage:
        data = self._request("get", "/attestations/logs", params={"page": page, "limit": limit})
        if self._is_error(data):
            return LogPage(page=page, error=data["error"])
        return LogPage(
            logs=data.get("logs", []),
            page=data.get("page", page),
            total_pages=data.get("totalPages", 1),
        )

    # ── Signed documents ──

    def list_signed_documents(self) -> list[dict[str, Any]] | dict[str, Any]:
        data = self._request("get", "/attestations/documents")
        if self._is_error(data):
            return data
        if isinstance(data, dict):
            return data.get("documents", [])
        return data

    def save_signed_document(
        self,
        file_id: str,
        key_id: str,
        reason: Optional[str] = None,
        location: Optional[str] = None,
    ) -> dict[str, Any]:
        return self._request("post", "/attestations/documents", json={
            "fileId": file_id,
            "keyId": key_id,
            "reason": reason,
            "location": location,
        })

    # ── Lifecycle ──

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()
