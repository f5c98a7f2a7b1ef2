"""Signing service — sign stored identities' documents and keep the records."""

import base64
import logging
from typing import Optional

from sqlalchemy import select

from attest_engine.audit.details import Provenance
from attest_engine.common.database import DatabaseManager
from attest_engine.signing.engine import SigningEngine
from attest_engine.signing.models import SignedDocumentModel
from attest_engine.signing.records import SigningContext, SigningResult
from attest_engine.vault.crypto import MasterKey
from attest_engine.vault.identity import SigningIdentity
from attest_engine.vault.service import IdentityService

logger = logging.getLogger(__name__)


class SigningService:
    """Look up the identity, run the engine, persist the outcome."""

    def __init__(
        self, db: DatabaseManager, identities: IdentityService, engine: SigningEngine,
    ):
        self.db = db
        self.identities = identities
        self.engine = engine

    @property
    def timestamping_available(self) -> bool:
        return self.engine.tsa is not None

    async def sign_document(
        self,
        document: bytes,
        identity_id: str,
        master_key: Optional[MasterKey],
        context: Optional[SigningContext] = None,
        timestamp: Optional[bool] = None,
        file_id: Optional[str] = None,
        provenance: Optional[Provenance] = None,
    ) -> tuple[SigningResult, SignedDocumentModel]:
        """Sign with a stored identity. ``timestamp=None`` stamps whenever a
        TSA is configured.

        Raises IdentityNotFoundError plus everything SigningEngine.sign raises.
        """
        identity = await self.identities.get_identity(identity_id)
        if timestamp is None:
            timestamp = self.timestamping_available

        result = await self.engine.sign(
            document, identity, master_key, context,
            timestamp=timestamp, provenance=provenance, file_id=file_id,
            revocation_check=self._revoked_since_lookup,
        )

        record = result.record
        token = record.timestamp
        row = SignedDocumentModel(
            owner_id=identity.owner_id,
            file_id=file_id,
            key_id=identity.id,
            reason=record.reason,
            location=record.location,
            document_hash=record.document_hash,
            signer_fingerprint=record.signer_fingerprint,
            signature=base64.b64encode(record.signature_bytes).decode("ascii"),
            timestamp_token=base64.b64encode(token.token_der).decode("ascii") if token else None,
            timestamp_gen_time=token.verification.gen_time if token else None,
        )
        async with self.db.get_session() as session:
            session.add(row)
        return result, row

    async def _revoked_since_lookup(self, identity: SigningIdentity) -> bool:
        # A deleted identity raises IdentityNotFoundError here
        current = await self.identities.get_identity(identity.id)
        return current.is_revoked

    async def record_signed_document(
        self,
        owner_id: str,
        key_id: str,
        file_id: Optional[str] = None,
        reason: Optional[str] = None,
        location: Optional[str] = None,
    ) -> SignedDocumentModel:
        """Store a record for a document signed elsewhere (by a client-side engine)."""
        row = SignedDocumentModel(
            owner_id=owner_id, key_id=key_id, file_id=file_id,
            reason=reason, location=location,
        )
        async with self.db.get_session() as session:
            session.add(row)
        logger.info("Recorded signed document %s for key %s", row.id, key_id)
        return row

    async def list_signed_documents(
        self, owner_id: str, file_id: Optional[str] = None,
    ) -> list[SignedDocumentModel]:
        """Signed-document records, newest first."""
        query = select(SignedDocumentModel).where(SignedDocumentModel.owner_id == owner_id)
        if file_id:
            query = query.where(SignedDocumentModel.file_id == file_id)
        query = query.order_by(SignedDocumentModel.created_at.desc())
        async with self.db.read_session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
