"""SQLAlchemy models for the hash-chained audit log."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from attest_engine.common.models import Base, generate_uuid


class AuditEntryModel(Base):
    __tablename__ = "audit_entries"
    __table_args__ = (
        # Storage-level compare-and-swap: two appends that read the same
        # tail cannot both commit.
        UniqueConstraint("chain_id", "seq", name="uq_audit_chain_seq"),
        UniqueConstraint("chain_id", "previous_hash", name="uq_audit_chain_prev"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    chain_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
