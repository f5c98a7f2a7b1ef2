"""Attest-Engine exception hierarchy."""


class AttestError(Exception):
    """Base exception for all attestation errors."""

    def __init__(self, message: str = "", code: str = "ATTEST_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# ── Key vault ──


class MasterKeyMissingError(AttestError):
    """Raised when an operation needs an unlocked master key and none was supplied."""

    def __init__(self, message: str = "Master key not available; unlock the session first"):
        super().__init__(message, code="MASTER_KEY_MISSING")


class KeyGenerationError(AttestError):
    """Raised when keypair or certificate generation fails."""

    def __init__(self, message: str = "Key generation failed"):
        super().__init__(message, code="KEY_GENERATION_FAILED")


class DecryptionError(AttestError):
    """Raised when an AEAD blob fails authentication (wrong key, corruption, tampering)."""

    def __init__(self, message: str = "Decryption failed"):
        super().__init__(message, code="DECRYPTION_FAILED")


class InvalidIdentityNameError(AttestError):
    """Raised when an identity name is empty or too long."""

    def __init__(self, message: str = "Invalid identity name"):
        super().__init__(message, code="INVALID_NAME")


class IdentityNotFoundError(AttestError):
    """Raised when a signing identity id is unknown or deleted."""

    def __init__(self, message: str = "Signing identity not found"):
        super().__init__(message, code="NOT_FOUND")


class RevokedIdentityError(AttestError):
    """Raised when a revoked identity is used for a new signature."""

    def __init__(self, message: str = "Signing identity is revoked"):
        super().__init__(message, code="IDENTITY_REVOKED")


# ── Signing ──


class SigningError(AttestError):
    """Raised when the signature primitive fails."""

    def __init__(self, message: str = "Signing failed"):
        super().__init__(message, code="SIGNING_FAILED")


class SignatureContainerError(AttestError):
    """Raised when a signed document has no signature block or a malformed one."""

    def __init__(self, message: str = "Signature container is missing or malformed"):
        super().__init__(message, code="CONTAINER_INVALID")


class TimestampError(AttestError):
    """Raised when a trusted timestamp cannot be obtained or verified.

    Non-fatal for signing: the signature completes without a timestamp.
    """

    def __init__(self, message: str = "Timestamp unavailable"):
        super().__init__(message, code="TIMESTAMP_FAILED")


# ── Audit chain ──


class ChainBrokenError(AttestError):
    """Raised when an audit chain fails verification."""

    def __init__(self, message: str = "Audit chain is broken", break_at: str | None = None):
        self.break_at = break_at
        super().__init__(message, code="CHAIN_BROKEN")


class AppendConflictError(AttestError):
    """Raised when a concurrent append raced for the same chain tail."""

    def __init__(self, message: str = "Audit chain tail changed during append"):
        super().__init__(message, code="APPEND_CONFLICT")
