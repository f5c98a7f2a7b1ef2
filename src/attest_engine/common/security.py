"""Request authentication and per-request session context."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request

from attest_engine.audit.details import Provenance
from attest_engine.vault.crypto import MasterKey


@dataclass
class RequestContext:
    """Caller-supplied session material for a single request.

    The master key is never persisted server-side; it lives only for the
    duration of the request that carried it.
    """
    master_key: Optional[MasterKey] = None
    provenance: Optional[Provenance] = None


async def require_api_key(
    x_attest_api_key: str = Header(..., alias="X-Attest-Api-Key"),
) -> str:
    """FastAPI dependency that validates the API key from header."""
    from attest_engine.common.config import get_settings

    settings = get_settings()
    if x_attest_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_attest_api_key


async def request_context(
    request: Request,
    x_attest_master_key: str | None = Header(None, alias="X-Attest-Master-Key"),
) -> RequestContext:
    """Resolve the unlocked master key (if any) and provenance of the caller.

    A missing header yields ``master_key=None``; operations that need the key
    raise ``MasterKeyMissingError`` themselves. A malformed header is a 400.
    """
    master_key = None
    if x_attest_master_key:
        try:
            master_key = MasterKey.from_b64(x_attest_master_key)
        except ValueError:
            raise HTTPException(status_code=400, detail="Malformed master key header")

    provenance = Provenance(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return RequestContext(master_key=master_key, provenance=provenance)
