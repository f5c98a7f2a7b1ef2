"""Identity service — persist signing identities and audit their lifecycle."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update

from attest_engine.audit.details import (
    AuditAction,
    KeyCreatedDetails,
    KeyDeletedDetails,
    KeyRevokedDetails,
    Provenance,
)
from attest_engine.audit.service import AuditChain
from attest_engine.common.database import DatabaseManager
from attest_engine.common.exceptions import IdentityNotFoundError
from attest_engine.common.models import utcnow
from attest_engine.vault.crypto import MasterKey, require_master_key
from attest_engine.vault.identity import SigningIdentity
from attest_engine.vault.keyvault import KeyVault
from attest_engine.vault.models import IdentityModel

logger = logging.getLogger(__name__)

DECRYPTION_FAILED_LABEL = "Decryption Failed"


@dataclass(frozen=True)
class IdentityView:
    """An identity as shown to its owner: decrypted name or a failure marker."""

    identity: SigningIdentity
    name: str
    name_decrypted: bool

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def is_revoked(self) -> bool:
        return self.identity.is_revoked


class IdentityService:
    """Signing identity storage with KEY_* audit side effects.

    Every audit append happens after the identity write has committed, so a
    failed write never leaves an entry behind.
    """

    def __init__(self, db: DatabaseManager, vault: KeyVault, audit: AuditChain):
        self.db = db
        self.vault = vault
        self.audit = audit

    # ── Create ──

    async def create_identity(
        self,
        owner_id: str,
        name: str,
        master_key: Optional[MasterKey],
        issuer: Optional[str] = None,
        provenance: Optional[Provenance] = None,
    ) -> SigningIdentity:
        identity = self.vault.create_identity(name, owner_id, issuer, master_key)
        async with self.db.get_session() as session:
            session.add(IdentityModel.from_identity(identity))

        await self.audit.append(
            owner_id,
            AuditAction.KEY_CREATED,
            KeyCreatedDetails(
                identity_id=identity.id,
                owner_id=owner_id,
                certificate_fingerprint=identity.fingerprint,
            ),
            provenance,
        )
        logger.info("Created signing identity %s", identity.id)
        return identity

    # ── Read ──

    async def get_identity(self, identity_id: str) -> SigningIdentity:
        async with self.db.read_session() as session:
            model = await session.get(IdentityModel, identity_id)
            if model is None:
                raise IdentityNotFoundError(f"Signing identity {identity_id} not found")
            return model.to_identity()

    async def list_identities(
        self,
        owner_id: str,
        master_key: Optional[MasterKey],
        available_only: bool = False,
    ) -> list[IdentityView]:
        """Owner's identities with names decrypted.

        A name that fails to decrypt is shown as ``"Decryption Failed"``; the
        rest of the list is unaffected. ``available_only`` drops revoked
        identities (the list offered for new signatures).
        """
        master_key = require_master_key(master_key)
        query = select(IdentityModel).where(IdentityModel.owner_id == owner_id)
        if available_only:
            query = query.where(IdentityModel.revoked_at.is_(None))
        query = query.order_by(IdentityModel.created_at.asc())

        async with self.db.read_session() as session:
            result = await session.execute(query)
            identities = [m.to_identity() for m in result.scalars().all()]

        views = []
        for identity in identities:
            name = self.vault.try_decrypt_identity_name(identity, master_key)
            views.append(IdentityView(
                identity=identity,
                name=name.value if name.ok else DECRYPTION_FAILED_LABEL,
                name_decrypted=name.ok,
            ))
        return views

    # ── Retire ──

    async def revoke_identity(
        self,
        identity_id: str,
        provenance: Optional[Provenance] = None,
        at: Optional[datetime] = None,
    ) -> SigningIdentity:
        """Revoke an identity. Revoking an already revoked one is a no-op."""
        at = at or utcnow()
        async with self.db.get_session() as session:
            model = await session.get(IdentityModel, identity_id)
            if model is None:
                raise IdentityNotFoundError(f"Signing identity {identity_id} not found")
            # Conditional update: only one caller wins the Active -> Revoked transition
            result = await session.execute(
                update(IdentityModel)
                .where(IdentityModel.id == identity_id, IdentityModel.revoked_at.is_(None))
                .values(revoked_at=at, updated_at=at)
                .execution_options(synchronize_session=False)
            )
            transitioned = result.rowcount == 1
            await session.refresh(model)
            identity = model.to_identity()

        if transitioned:
            await self.audit.append(
                identity.owner_id,
                AuditAction.KEY_REVOKED,
                KeyRevokedDetails(
                    identity_id=identity.id,
                    revoked_at=identity.revoked_at.isoformat(),
                ),
                provenance,
            )
            logger.info("Revoked signing identity %s", identity.id)
        return identity

    async def delete_identity(
        self, identity_id: str, provenance: Optional[Provenance] = None,
    ) -> None:
        """Remove the stored blobs. Signatures already issued still verify
        from the certificate embedded in each signed document."""
        async with self.db.get_session() as session:
            model = await session.get(IdentityModel, identity_id)
            if model is None:
                raise IdentityNotFoundError(f"Signing identity {identity_id} not found")
            owner_id = model.owner_id
            result = await session.execute(
                delete(IdentityModel)
                .where(IdentityModel.id == identity_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise IdentityNotFoundError(f"Signing identity {identity_id} not found")

        await self.audit.append(
            owner_id,
            AuditAction.KEY_DELETED,
            KeyDeletedDetails(identity_id=identity_id),
            provenance,
        )
        logger.info("Deleted signing identity %s", identity_id)
