"""Tests for the stored audit chain service."""

import asyncio

import pytest
from sqlalchemy import update

from attest_engine.audit.chain import GENESIS_HASH, verify_chain
from attest_engine.audit.details import (
    AuditAction,
    KeyCreatedDetails,
    KeyDeletedDetails,
    Provenance,
)
from attest_engine.audit.models import AuditEntryModel
from attest_engine.audit.service import AuditChain
from attest_engine.common.exceptions import AppendConflictError


def created(identity_id: str = "id-1") -> KeyCreatedDetails:
    return KeyCreatedDetails(
        identity_id=identity_id, owner_id="user-1", certificate_fingerprint="ab" * 32,
    )


class TestAppend:
    async def test_first_entry_links_to_genesis(self, audit):
        entry = await audit.append("user-1", AuditAction.KEY_CREATED, created())
        assert entry.previous_hash == GENESIS_HASH
        assert entry.seq == 1
        assert entry.action == "KEY_CREATED"
        assert entry.details["identity_id"] == "id-1"
        assert "action" not in entry.details

    async def test_entries_link(self, audit):
        first = await audit.append("user-1", AuditAction.KEY_CREATED, created("a"))
        second = await audit.append("user-1", AuditAction.KEY_DELETED, {"identity_id": "a"})
        assert second.previous_hash == first.hash
        assert second.seq == 2

    async def test_chains_are_independent(self, audit):
        await audit.append("user-1", AuditAction.KEY_CREATED, created())
        other = await audit.append("user-2", AuditAction.KEY_CREATED, created())
        assert other.previous_hash == GENESIS_HASH

    async def test_provenance_recorded(self, audit):
        entry = await audit.append(
            "user-1", AuditAction.KEY_DELETED, KeyDeletedDetails(identity_id="x"),
            Provenance(ip_address="10.0.0.1", user_agent="pytest"),
        )
        assert entry.ip_address == "10.0.0.1"
        assert entry.user_agent == "pytest"

    async def test_details_must_match_action(self, audit):
        with pytest.raises(ValueError):
            await audit.append("user-1", AuditAction.KEY_DELETED, created())

    async def test_details_reject_extra_fields(self, audit):
        with pytest.raises(ValueError):
            await audit.append(
                "user-1", AuditAction.KEY_DELETED, {"identity_id": "x", "name": "Work"},
            )
        assert await audit.get_entries("user-1") == []

    async def test_unknown_action(self, audit):
        with pytest.raises(ValueError):
            await audit.append("user-1", "KEY_EXPORTED", {"identity_id": "x"})

    async def test_concurrent_appends_form_one_chain(self, audit):
        await asyncio.gather(*[
            audit.append("user-1", AuditAction.KEY_CREATED, created(f"id-{i}"))
            for i in range(50)
        ])
        entries = await audit.get_entries("user-1")
        assert len(entries) == 50
        assert [e.seq for e in entries] == list(range(1, 51))
        assert len({e.previous_hash for e in entries}) == 50
        assert verify_chain(entries).valid


class TestAppendConflict:
    async def test_stale_tail_is_retried(self, audit, monkeypatch):
        await audit.append("user-1", AuditAction.KEY_CREATED, created("a"))

        real_tail = AuditChain._tail
        calls = {"n": 0}

        async def stale_once(session, chain_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None  # pretend the chain is still empty
            return await real_tail(session, chain_id)

        monkeypatch.setattr(audit, "_tail", stale_once)
        entry = await audit.append("user-1", AuditAction.KEY_CREATED, created("b"))

        assert calls["n"] == 2
        assert entry.seq == 2
        assert verify_chain(await audit.get_entries("user-1")).valid

    async def test_gives_up_after_max_attempts(self, db, monkeypatch):
        audit = AuditChain(db, max_attempts=2, backoff_base=0.001)
        await audit.append("user-1", AuditAction.KEY_CREATED, created("a"))

        async def always_stale(session, chain_id):
            return None

        monkeypatch.setattr(audit, "_tail", always_stale)
        with pytest.raises(AppendConflictError):
            await audit.append("user-1", AuditAction.KEY_CREATED, created("b"))

        monkeypatch.undo()
        entries = await audit.get_entries("user-1")
        assert len(entries) == 1


class TestRead:
    async def test_chain_head(self, audit):
        assert await audit.get_chain_head("user-1") is None
        await audit.append("user-1", AuditAction.KEY_CREATED, created("a"))
        last = await audit.append("user-1", AuditAction.KEY_CREATED, created("b"))
        head = await audit.get_chain_head("user-1")
        assert head.id == last.id

    async def test_page_newest_first(self, audit):
        for i in range(25):
            await audit.append("user-1", AuditAction.KEY_CREATED, created(f"id-{i}"))

        first = await audit.page("user-1", page=1, page_size=10)
        assert first.total == 25
        assert first.total_pages == 3
        assert [e.seq for e in first.entries] == list(range(25, 15, -1))

        last = await audit.page("user-1", page=3, page_size=10)
        assert [e.seq for e in last.entries] == [5, 4, 3, 2, 1]
        assert last.anchor_hash == GENESIS_HASH

    async def test_page_verifies_with_its_anchor(self, audit):
        for i in range(12):
            await audit.append("user-1", AuditAction.KEY_CREATED, created(f"id-{i}"))
        page = await audit.page("user-1", page=1, page_size=5)
        assert verify_chain(page.chronological(), page.anchor_hash).valid

    async def test_empty_chain_page(self, audit):
        page = await audit.page("nobody")
        assert page.entries == []
        assert page.total == 0
        assert page.total_pages == 1

    async def test_page_out_of_range_is_empty(self, audit):
        await audit.append("user-1", AuditAction.KEY_CREATED, created())
        page = await audit.page("user-1", page=5)
        assert page.entries == []

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0)])
    async def test_invalid_paging(self, audit, page, page_size):
        with pytest.raises(ValueError):
            await audit.page("user-1", page=page, page_size=page_size)


class TestVerifyStored:
    async def test_intact(self, audit):
        for i in range(3):
            await audit.append("user-1", AuditAction.KEY_CREATED, created(f"id-{i}"))
        result = await audit.verify_stored_chain("user-1")
        assert result.valid
        assert result.entries_checked == 3

    async def test_tampered_row_detected(self, db, audit):
        entries = [
            await audit.append("user-1", AuditAction.KEY_CREATED, created(f"id-{i}"))
            for i in range(4)
        ]
        async with db.get_session() as session:
            await session.execute(
                update(AuditEntryModel)
                .where(AuditEntryModel.id == entries[2].id)
                .values(details={
                    "identity_id": "forged", "owner_id": "user-1",
                    "certificate_fingerprint": "ab" * 32,
                })
            )

        result = await audit.verify_stored_chain("user-1")
        assert not result.valid
        assert result.break_at == entries[2].id
        assert result.break_index == 2
