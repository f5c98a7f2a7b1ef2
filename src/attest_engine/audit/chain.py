"""
Hash-chain primitives for the audit log.

    hash = SHA-256( canonical JSON of
        {"action", "details", "created_at", "previous_hash"} )

Canonical JSON uses sorted keys and compact separators; ``created_at`` is
normalised to UTC ISO-8601 with microseconds and a ``Z`` suffix. The first
entry of a chain links to GENESIS_HASH.

These functions work on any ordered sequence of entries (ORM rows, API
schemas, or plain dicts), so a client can verify pages it downloaded.
"""

import hashlib
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from attest_engine.common.exceptions import ChainBrokenError

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


def canonical_time(value: datetime | str) -> str:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise TypeError(f"created_at must be a datetime or ISO-8601 string, not {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def compute_entry_hash(
    action: str,
    details: dict[str, Any],
    created_at: datetime | str,
    previous_hash: str,
) -> str:
    """SHA-256 of canonical JSON of the hashed entry fields."""
    canonical = json.dumps(
        {
            "action": str(getattr(action, "value", action)),
            "details": details or {},
            "created_at": canonical_time(created_at),
            "previous_hash": previous_hash,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ChainVerification:
    valid: bool
    entries_checked: int
    break_at: Optional[str] = None  # id of the earliest bad entry
    break_index: Optional[int] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def verify_chain(
    entries: Iterable[Any],
    anchor_hash: str = GENESIS_HASH,
) -> ChainVerification:
    """Walk entries oldest→newest and stop at the first inconsistency.

    For a page or any other contiguous sub-range, pass the ``hash`` of the
    entry just before it as ``anchor_hash``.
    """
    expected_prev = anchor_hash
    checked = 0
    for index, entry in enumerate(entries):
        entry_id = _field(entry, "id")
        if _field(entry, "previous_hash") != expected_prev:
            return ChainVerification(
                valid=False, entries_checked=index,
                break_at=entry_id, break_index=index,
                reason="previous_hash does not link to the preceding entry",
            )

        try:
            expected_hash = compute_entry_hash(
                _field(entry, "action"),
                _field(entry, "details"),
                _field(entry, "created_at"),
                _field(entry, "previous_hash"),
            )
        except (TypeError, ValueError):
            expected_hash = None
        if expected_hash is None or _field(entry, "hash") != expected_hash:
            return ChainVerification(
                valid=False, entries_checked=index,
                break_at=entry_id, break_index=index,
                reason="hash does not match entry contents",
            )

        expected_prev = _field(entry, "hash")
        checked = index + 1

    return ChainVerification(valid=True, entries_checked=checked)


def ensure_chain_intact(
    entries: Iterable[Any],
    anchor_hash: str = GENESIS_HASH,
) -> ChainVerification:
    """Like verify_chain, but a break raises ChainBrokenError."""
    result = verify_chain(entries, anchor_hash)
    if not result.valid:
        logger.error(
            "Audit chain broken at entry %s (index %s): %s",
            result.break_at, result.break_index, result.reason,
        )
        raise ChainBrokenError(
            f"Audit chain broken at index {result.break_index}: {result.reason}",
            break_at=result.break_at,
        )
    return result
