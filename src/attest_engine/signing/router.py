"""Signing API router."""

import base64
import binascii

from fastapi import APIRouter, Depends, HTTPException, Query

from attest_engine.common.exceptions import (
    AppendConflictError,
    DecryptionError,
    IdentityNotFoundError,
    MasterKeyMissingError,
    RevokedIdentityError,
    SigningError,
)
from attest_engine.common.security import RequestContext, request_context, require_api_key
from attest_engine.signing.records import SigningContext
from attest_engine.signing.schemas import (
    SignedDocumentCreate,
    SignedDocumentResponse,
    SignRequest,
    SignResponse,
    TimestampVerificationResponse,
    VerifyRequest,
    VerifyResponse,
)

router = APIRouter()


def _get_service():
    from attest_engine.deps import get_signing_service
    return get_signing_service()


def _decode(value: str, field: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail=f"{field} is not valid base64")


def _stamp(verification):
    if verification is None:
        return None
    return TimestampVerificationResponse.model_validate(verification)


@router.post("/sign", response_model=SignResponse)
async def sign_document(
    body: SignRequest,
    ctx: RequestContext = Depends(request_context),
    _=Depends(require_api_key),
):
    document = _decode(body.document, "document")
    svc = _get_service()
    try:
        result, row = await svc.sign_document(
            document, body.identity_id, ctx.master_key,
            SigningContext(reason=body.reason, location=body.location),
            timestamp=body.timestamp, file_id=body.file_id,
            provenance=ctx.provenance,
        )
    except IdentityNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except MasterKeyMissingError as e:
        raise HTTPException(status_code=401, detail=e.message)
    except RevokedIdentityError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except DecryptionError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except AppendConflictError as e:
        raise HTTPException(status_code=503, detail=e.message)
    except SigningError as e:
        raise HTTPException(status_code=500, detail=e.message)

    record = result.record
    return SignResponse(
        record_id=row.id,
        signed_document=base64.b64encode(result.signed_bytes).decode("ascii"),
        identity_id=record.signer_identity_id,
        document_hash=record.document_hash,
        signature=base64.b64encode(record.signature_bytes).decode("ascii"),
        signer_fingerprint=record.signer_fingerprint,
        signed_at=record.signed_at,
        reason=record.reason,
        location=record.location,
        state=result.state.value,
        transitions=[s.value for s in result.transitions],
        timestamped=result.timestamp is not None,
        timestamp=_stamp(result.timestamp_verification),
        timestamp_error=result.timestamp_error,
        audit_entry_id=result.audit_entry.id if result.audit_entry else None,
    )


@router.post("/verify", response_model=VerifyResponse)
async def verify_document(body: VerifyRequest, _=Depends(require_api_key)):
    signed = _decode(body.signed_document, "signed_document")
    result = _get_service().engine.verify(signed)
    return VerifyResponse(
        valid=result.valid,
        document_hash=result.document_hash,
        identity_id=result.identity_id,
        signer_fingerprint=result.signer_fingerprint,
        reason=result.reason,
        location=result.location,
        signed_at=result.signed_at,
        timestamp=_stamp(result.timestamp),
        error=result.error,
    )


@router.get("/documents", response_model=list[SignedDocumentResponse])
async def list_signed_documents(
    owner_id: str = Query(...),
    file_id: str | None = Query(None),
    _=Depends(require_api_key),
):
    rows = await _get_service().list_signed_documents(owner_id, file_id=file_id)
    return [SignedDocumentResponse.model_validate(r) for r in rows]


@router.post("/documents", response_model=SignedDocumentResponse, status_code=201)
async def record_signed_document(body: SignedDocumentCreate, _=Depends(require_api_key)):
    row = await _get_service().record_signed_document(
        body.owner_id, body.key_id,
        file_id=body.file_id, reason=body.reason, location=body.location,
    )
    return SignedDocumentResponse.model_validate(row)
