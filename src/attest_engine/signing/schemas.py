"""Pydantic schemas for signing endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SignRequest(BaseModel):
    identity_id: str
    document: str = Field(..., description="Base64-encoded document bytes")
    reason: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=500)
    timestamp: Optional[bool] = None
    file_id: Optional[str] = None


class TimestampVerificationResponse(BaseModel):
    verified: bool
    gen_time: Optional[datetime] = None
    tsa_signer: Optional[str] = None
    tsa_cert_chain_validated: bool = False
    tsa_ocsp_status: Optional[str] = None
    policy: Optional[str] = None
    serial_number: Optional[int] = None
    message_imprint: Optional[str] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class SignResponse(BaseModel):
    record_id: str
    signed_document: str
    identity_id: str
    document_hash: str
    signature: str
    signer_fingerprint: str
    signed_at: datetime
    reason: Optional[str] = None
    location: Optional[str] = None
    state: str
    transitions: list[str] = []
    timestamped: bool = False
    timestamp: Optional[TimestampVerificationResponse] = None
    timestamp_error: Optional[str] = None
    audit_entry_id: Optional[str] = None


class VerifyRequest(BaseModel):
    signed_document: str = Field(..., description="Base64-encoded signed document")


class VerifyResponse(BaseModel):
    valid: bool
    document_hash: Optional[str] = None
    identity_id: Optional[str] = None
    signer_fingerprint: Optional[str] = None
    reason: Optional[str] = None
    location: Optional[str] = None
    signed_at: Optional[str] = None
    timestamp: Optional[TimestampVerificationResponse] = None
    error: Optional[str] = None


class SignedDocumentCreate(BaseModel):
    """Accepts the remote API's camelCase field names as well."""

    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(..., alias="ownerId")
    key_id: str = Field(..., alias="keyId")
    file_id: Optional[str] = Field(None, alias="fileId")
    reason: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=500)


class SignedDocumentResponse(BaseModel):
    id: str
    owner_id: str
    file_id: Optional[str] = None
    key_id: str
    reason: Optional[str] = None
    location: Optional[str] = None
    document_hash: Optional[str] = None
    signer_fingerprint: Optional[str] = None
    timestamp_gen_time: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}
