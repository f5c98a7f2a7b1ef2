"""SQLAlchemy model for signed-document records."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from attest_engine.common.models import Base, TimestampMixin, generate_uuid


class SignedDocumentModel(Base, TimestampMixin):
    __tablename__ = "signed_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    file_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    # Not a foreign key: identities may be deleted while their signatures live on
    key_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)
    document_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signer_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp_gen_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
