"""Signing identity API router."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse

from attest_engine.common.exceptions import (
    IdentityNotFoundError,
    InvalidIdentityNameError,
    KeyGenerationError,
    MasterKeyMissingError,
)
from attest_engine.common.security import RequestContext, request_context, require_api_key
from attest_engine.vault.identity import SigningIdentity
from attest_engine.vault.schemas import IdentityCreate, IdentityResponse
from attest_engine.vault.service import DECRYPTION_FAILED_LABEL

router = APIRouter()


def _get_service():
    from attest_engine.deps import get_identity_service
    return get_identity_service()


def _to_response(
    identity: SigningIdentity, name: str | None = None, name_decrypted: bool = False,
) -> IdentityResponse:
    return IdentityResponse(
        id=identity.id,
        owner_id=identity.owner_id,
        name=name,
        name_decrypted=name_decrypted,
        fingerprint=identity.fingerprint,
        certificate_pem=identity.certificate_pem,
        created_at=identity.created_at,
        revoked_at=identity.revoked_at,
        is_revoked=identity.is_revoked,
    )


@router.post("/identities", response_model=IdentityResponse, status_code=201)
async def create_identity(
    body: IdentityCreate,
    ctx: RequestContext = Depends(request_context),
    _=Depends(require_api_key),
):
    svc = _get_service()
    try:
        identity = await svc.create_identity(
            body.owner_id, body.name, ctx.master_key,
            issuer=body.issuer, provenance=ctx.provenance,
        )
    except MasterKeyMissingError as e:
        raise HTTPException(status_code=401, detail=e.message)
    except InvalidIdentityNameError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except KeyGenerationError as e:
        raise HTTPException(status_code=500, detail=e.message)
    return _to_response(identity, name=body.name, name_decrypted=True)


@router.get("/identities", response_model=list[IdentityResponse])
async def list_identities(
    owner_id: str = Query(...),
    available_only: bool = Query(False),
    ctx: RequestContext = Depends(request_context),
    _=Depends(require_api_key),
):
    svc = _get_service()
    try:
        views = await svc.list_identities(
            owner_id, ctx.master_key, available_only=available_only,
        )
    except MasterKeyMissingError as e:
        raise HTTPException(status_code=401, detail=e.message)
    return [_to_response(v.identity, v.name, v.name_decrypted) for v in views]


@router.get("/identities/{identity_id}/certificate", response_class=PlainTextResponse)
async def export_certificate(identity_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    try:
        identity = await svc.get_identity(identity_id)
    except IdentityNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return PlainTextResponse(identity.certificate_pem, media_type="application/x-pem-file")


@router.post("/identities/{identity_id}/revoke", response_model=IdentityResponse)
async def revoke_identity(
    identity_id: str,
    ctx: RequestContext = Depends(request_context),
    _=Depends(require_api_key),
):
    svc = _get_service()
    try:
        identity = await svc.revoke_identity(identity_id, provenance=ctx.provenance)
    except IdentityNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    if ctx.master_key is None:
        return _to_response(identity)
    name = svc.vault.try_decrypt_identity_name(identity, ctx.master_key)
    return _to_response(
        identity, name.value if name.ok else DECRYPTION_FAILED_LABEL, name.ok,
    )


@router.delete("/identities/{identity_id}", status_code=204)
async def delete_identity(
    identity_id: str,
    ctx: RequestContext = Depends(request_context),
    _=Depends(require_api_key),
):
    svc = _get_service()
    try:
        await svc.delete_identity(identity_id, provenance=ctx.provenance)
    except IdentityNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
