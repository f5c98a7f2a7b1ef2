"""Audit service — append, page, and verify the hash-chained event log."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from attest_engine.audit.chain import (
    GENESIS_HASH,
    ChainVerification,
    compute_entry_hash,
    verify_chain,
)
from attest_engine.audit.details import (
    AuditAction,
    Provenance,
    details_to_payload,
    parse_details,
)
from attest_engine.audit.models import AuditEntryModel
from attest_engine.audit.schemas import AuditLogEntry
from attest_engine.common.database import DatabaseManager
from attest_engine.common.exceptions import AppendConflictError
from attest_engine.common.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class AuditPage:
    """One page of a chain, newest first."""

    entries: list[AuditLogEntry] = field(default_factory=list)
    page: int = 1
    page_size: int = 10
    total: int = 0
    total_pages: int = 1

    def chronological(self) -> list[AuditLogEntry]:
        return list(reversed(self.entries))

    @property
    def anchor_hash(self) -> str:
        """Hash the oldest entry on this page links back to."""
        if not self.entries:
            return GENESIS_HASH
        return self.entries[-1].previous_hash


class AuditChain:
    """Immutable, hash-chained event log; one chain per owner."""

    def __init__(
        self,
        db: DatabaseManager,
        max_attempts: int = 5,
        backoff_base: float = 0.05,
    ):
        self.db = db
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, chain_id: str) -> asyncio.Lock:
        lock = self._locks.get(chain_id)
        if lock is None:
            lock = self._locks[chain_id] = asyncio.Lock()
        return lock

    # ── Write ──

    async def append(
        self,
        chain_id: str,
        action: AuditAction | str,
        details: Any,
        provenance: Optional[Provenance] = None,
    ) -> AuditLogEntry:
        """Append an entry to the tail of ``chain_id``.

        Appends to one chain are serialized in-process; the unique
        constraints on ``(chain_id, seq)`` and ``(chain_id, previous_hash)``
        reject a writer that raced from elsewhere, which is retried with
        exponential backoff.

        Raises:
            ValueError: details do not match the variant for ``action``.
            AppendConflictError: the tail kept moving for every attempt.
        """
        action = AuditAction(action)
        payload = details_to_payload(parse_details(action, details))
        provenance = provenance or Provenance()

        async with self._lock_for(chain_id):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return await self._append_once(chain_id, action, payload, provenance)
                except AppendConflictError:
                    if attempt >= self.max_attempts:
                        logger.error(
                            "Audit append to chain %s failed after %d attempts",
                            chain_id, attempt,
                        )
                        raise
                    delay = self.backoff_base * (2 ** (attempt - 1))
                    logger.warning(
                        "Audit append conflict on chain %s (attempt %d/%d), retrying in %.2fs",
                        chain_id, attempt, self.max_attempts, delay,
                        extra={"chain_id": chain_id, "attempt": attempt},
                    )
                    await asyncio.sleep(delay)
        raise AppendConflictError()  # unreachable: the loop returns or raises

    async def _append_once(
        self,
        chain_id: str,
        action: AuditAction,
        payload: dict[str, Any],
        provenance: Provenance,
    ) -> AuditLogEntry:
        try:
            async with self.db.get_session() as session:
                tail = await self._tail(session, chain_id)
                previous_hash = tail.hash if tail else GENESIS_HASH
                created_at = utcnow()
                entry = AuditEntryModel(
                    chain_id=chain_id,
                    seq=tail.seq + 1 if tail else 1,
                    action=action.value,
                    details=payload,
                    hash=compute_entry_hash(action.value, payload, created_at, previous_hash),
                    previous_hash=previous_hash,
                    created_at=created_at,
                    ip_address=provenance.ip_address,
                    user_agent=provenance.user_agent,
                )
                session.add(entry)
                await session.flush()
        except IntegrityError as exc:
            raise AppendConflictError(
                f"Chain {chain_id} tail moved during append"
            ) from exc
        return AuditLogEntry.model_validate(entry)

    # ── Read ──

    @staticmethod
    async def _tail(session: AsyncSession, chain_id: str) -> AuditEntryModel | None:
        result = await session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.chain_id == chain_id)
            .order_by(AuditEntryModel.seq.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_chain_head(self, chain_id: str) -> AuditLogEntry | None:
        """Return the most recent entry of a chain."""
        async with self.db.read_session() as session:
            tail = await self._tail(session, chain_id)
            return AuditLogEntry.model_validate(tail) if tail else None

    async def get_entries(self, chain_id: str) -> list[AuditLogEntry]:
        """Whole chain, oldest → newest."""
        async with self.db.read_session() as session:
            result = await session.execute(
                select(AuditEntryModel)
                .where(AuditEntryModel.chain_id == chain_id)
                .order_by(AuditEntryModel.seq.asc())
            )
            return [AuditLogEntry.model_validate(e) for e in result.scalars().all()]

    async def page(self, chain_id: str, page: int = 1, page_size: int = 10) -> AuditPage:
        """Paginated entries, newest first. Pages are 1-based."""
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        async with self.db.read_session() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(AuditEntryModel)
                .where(AuditEntryModel.chain_id == chain_id)
            ) or 0
            result = await session.execute(
                select(AuditEntryModel)
                .where(AuditEntryModel.chain_id == chain_id)
                .order_by(AuditEntryModel.seq.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            entries = [AuditLogEntry.model_validate(e) for e in result.scalars().all()]

        return AuditPage(
            entries=entries,
            page=page,
            page_size=page_size,
            total=total,
            total_pages=max(1, math.ceil(total / page_size)),
        )

    # ── Verify ──

    async def verify_stored_chain(self, chain_id: str) -> ChainVerification:
        """Walk the stored chain oldest→newest and report the first break."""
        result = verify_chain(await self.get_entries(chain_id))
        if not result.valid:
            logger.error(
                "Audit chain %s broken at entry %s: %s",
                chain_id, result.break_at, result.reason,
            )
        return result
