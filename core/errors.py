"""
core/errors.py -- Exception taxonomy for the bridge.

Three families, each with a different blast radius:

  VerificationError    -- bad, expired or unverifiable credential, or the
                          provider could not be reached. Always recoverable:
                          the bridge resolves the request as anonymous.
  ReconciliationError  -- the verified identity could not be mapped onto local
                          records (storage down, adapter missing a capability,
                          email already linked to a different identity).
                          Recoverable at the bridge, but logged at ERROR because
                          it points at misconfiguration, not a bad credential.
  ConfigurationError   -- fatal at setup. Raised while the application is being
                          assembled, never per request.

StorageError / DuplicateRecordError are raised by repositories so the
reconciler never has to know which storage library sits underneath.
"""


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class VerificationError(BridgeError):
    EXPIRED = "expired"
    INVALID = "invalid"
    TRANSPORT = "transport"
    UNSUPPORTED = "unsupported"

    def __init__(self, reason: str, message: str = "") -> None:
        self.reason = reason
        super().__init__(message or reason)


class ReconciliationError(BridgeError):
    STORAGE_UNAVAILABLE = "storage_unavailable"
    MISSING_CAPABILITY = "missing_capability"
    IDENTITY_CONFLICT = "identity_conflict"

    def __init__(self, reason: str, message: str = "") -> None:
        self.reason = reason
        super().__init__(message or reason)


class ConfigurationError(BridgeError):
    """Unknown store class, or a store/entity type missing a required capability."""


class StorageError(BridgeError):
    """The backing store failed (connection lost, locked database, ...)."""


class DuplicateRecordError(StorageError):
    """A unique constraint rejected the write -- another writer got there first."""
