"""Typed audit payloads, one fixed variant per action.

Each variant forbids extra fields so the hashed JSON is always the same
shape for a given action. Payloads carry ids, hashes, and fingerprints only;
never names, keys, or document contents.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class AuditAction(str, Enum):
    KEY_CREATED = "KEY_CREATED"
    KEY_REVOKED = "KEY_REVOKED"
    KEY_DELETED = "KEY_DELETED"
    DOCUMENT_SIGNED = "DOCUMENT_SIGNED"


@dataclass(frozen=True)
class Provenance:
    """Where an audited operation came from."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class _Details(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class KeyCreatedDetails(_Details):
    action: Literal["KEY_CREATED"] = "KEY_CREATED"
    identity_id: str
    owner_id: str
    certificate_fingerprint: str


class KeyRevokedDetails(_Details):
    action: Literal["KEY_REVOKED"] = "KEY_REVOKED"
    identity_id: str
    revoked_at: str  # ISO-8601


class KeyDeletedDetails(_Details):
    action: Literal["KEY_DELETED"] = "KEY_DELETED"
    identity_id: str


class DocumentSignedDetails(_Details):
    action: Literal["DOCUMENT_SIGNED"] = "DOCUMENT_SIGNED"
    identity_id: str
    document_hash: str
    signer_fingerprint: str
    reason: Optional[str] = None
    location: Optional[str] = None
    timestamped: bool = False
    file_id: Optional[str] = None


AuditDetails = Annotated[
    Union[KeyCreatedDetails, KeyRevokedDetails, KeyDeletedDetails, DocumentSignedDetails],
    Field(discriminator="action"),
]

_details_adapter: TypeAdapter = TypeAdapter(AuditDetails)


def parse_details(action: AuditAction | str, details: Any) -> _Details:
    """Validate a payload against the variant for ``action``.

    Accepts a details model or a plain dict (with or without the ``action``
    tag). A payload tagged with a different action is rejected.
    """
    action = AuditAction(action)
    if isinstance(details, _Details):
        details = details.model_dump()
    data = dict(details or {})
    tagged = data.setdefault("action", action.value)
    if tagged != action.value:
        raise ValueError(f"Details tagged {tagged!r} do not match action {action.value!r}")
    return _details_adapter.validate_python(data)


def details_to_payload(details: _Details) -> dict[str, Any]:
    """The stored/hashed form: plain JSON values without the action tag."""
    return details.model_dump(mode="json", exclude={"action"})
