"""SQLAlchemy model for stored signing identities."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from attest_engine.common.models import Base, TimestampMixin, generate_uuid
from attest_engine.vault.identity import SigningIdentity


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class IdentityModel(Base, TimestampMixin):
    __tablename__ = "signing_identities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    encrypted_name: Mapped[str] = mapped_column(Text, nullable=False)
    certificate_pem: Mapped[str] = mapped_column(Text, nullable=False)
    encrypted_private_key: Mapped[str] = mapped_column(Text, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @classmethod
    def from_identity(cls, identity: SigningIdentity) -> "IdentityModel":
        return cls(
            id=identity.id,
            owner_id=identity.owner_id,
            encrypted_name=identity.encrypted_name,
            certificate_pem=identity.certificate_pem,
            encrypted_private_key=identity.encrypted_private_key,
            revoked_at=identity.revoked_at,
            created_at=identity.created_at,
            updated_at=identity.created_at,
        )

    def to_identity(self) -> SigningIdentity:
        return SigningIdentity(
            id=self.id,
            owner_id=self.owner_id,
            encrypted_name=self.encrypted_name,
            certificate_pem=self.certificate_pem,
            encrypted_private_key=self.encrypted_private_key,
            created_at=_as_utc(self.created_at),
            revoked_at=_as_utc(self.revoked_at),
        )
