"""Pydantic schemas for audit chain API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditLogEntry(BaseModel):
    id: str
    chain_id: str = ""
    seq: int = 0
    action: str
    details: dict[str, Any] = {}
    hash: str
    previous_hash: str
    created_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = {"from_attributes": True}


class AuditPageResponse(BaseModel):
    """Matches the remote log endpoint: ``{logs, page, totalPages}``."""

    model_config = ConfigDict(populate_by_name=True)

    logs: list[AuditLogEntry]
    page: int
    total: int
    total_pages: int = Field(alias="totalPages")


class VerifyChainRequest(BaseModel):
    entries: list[AuditLogEntry]
    anchor_hash: Optional[str] = None


class AuditChainVerification(BaseModel):
    valid: bool
    entries_checked: int
    break_at: Optional[str] = None
    break_index: Optional[int] = None
    reason: Optional[str] = None
