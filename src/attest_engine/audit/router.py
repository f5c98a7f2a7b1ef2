"""Audit chain API router."""

from fastapi import APIRouter, Depends, HTTPException, Query

from attest_engine.audit.chain import GENESIS_HASH, verify_chain
from attest_engine.audit.schemas import (
    AuditChainVerification,
    AuditPageResponse,
    VerifyChainRequest,
)
from attest_engine.common.config import get_settings
from attest_engine.common.security import require_api_key

router = APIRouter()


def _get_audit():
    from attest_engine.deps import get_audit_chain
    return get_audit_chain()


def _to_response(result) -> AuditChainVerification:
    return AuditChainVerification(
        valid=result.valid,
        entries_checked=result.entries_checked,
        break_at=result.break_at,
        break_index=result.break_index,
        reason=result.reason,
    )


@router.get("/audit/logs", response_model=AuditPageResponse, response_model_by_alias=True)
async def get_audit_logs(
    chain_id: str = Query(...),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    _=Depends(require_api_key),
):
    settings = get_settings()
    page_size = limit or settings.default_page_size
    if page_size > settings.max_page_size:
        raise HTTPException(
            status_code=422, detail=f"limit must be at most {settings.max_page_size}",
        )
    result = await _get_audit().page(chain_id, page=page, page_size=page_size)
    return AuditPageResponse(
        logs=result.entries,
        page=result.page,
        total=result.total,
        totalPages=result.total_pages,
    )


@router.get("/audit/{chain_id}/verify", response_model=AuditChainVerification)
async def verify_audit_chain(chain_id: str, _=Depends(require_api_key)):
    result = await _get_audit().verify_stored_chain(chain_id)
    return _to_response(result)


@router.post("/audit/verify", response_model=AuditChainVerification)
async def verify_submitted_chain(body: VerifyChainRequest, _=Depends(require_api_key)):
    """Verify entries supplied by the caller, oldest first."""
    result = verify_chain(body.entries, anchor_hash=body.anchor_hash or GENESIS_HASH)
    return _to_response(result)
