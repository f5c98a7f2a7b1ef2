"""Pydantic schemas for signing identity endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class IdentityCreate(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=255)
    name: str
    issuer: Optional[str] = Field(None, max_length=255)


class IdentityResponse(BaseModel):
    id: str
    owner_id: str
    name: Optional[str] = None
    name_decrypted: bool = False
    fingerprint: str
    certificate_pem: str
    created_at: datetime
    revoked_at: Optional[datetime] = None
    is_revoked: bool = False
