"""
Custom exceptions for the moves library store.

Every component raises these exceptions so callers (UI, sync queue,
command line) can handle failures without knowing which layer failed.
"""


class MovesStorageError(Exception):
    """Base exception for all library store errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(MovesStorageError):
    """Raised when an entity required by an operation does not exist."""

    def __init__(self, entity_type: str, entity_id: str, reason: str | None = None):
        details = {"entity_type": entity_type, "entity_id": entity_id}
        message = f"{entity_type} not found: {entity_id}"
        if reason:
            details["reason"] = reason
            message += f" ({reason})"
        super().__init__(message, details)
        self.entity_type = entity_type
        self.entity_id = entity_id


class MissingBlobError(MovesStorageError):
    """Raised when a binary payload needed by an operation is absent."""

    def __init__(self, blob_kind: str, key: str, owner_id: str | None = None):
        details = {"blob_kind": blob_kind, "key": key}
        message = f"Missing {blob_kind} blob: {key}"
        if owner_id:
            details["owner_id"] = owner_id
            message += f" (needed by {owner_id})"
        super().__init__(message, details)
        self.blob_kind = blob_kind
        self.key = key
        self.owner_id = owner_id


class ValidationError(MovesStorageError):
    """Raised when entity or settings data fails validation."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class InvalidFormatError(MovesStorageError):
    """Raised when a backup document is malformed."""

    def __init__(self, reason: str):
        super().__init__(f"Invalid backup document: {reason}", {"reason": reason})
        self.reason = reason


class UnsupportedFormatError(InvalidFormatError):
    """Raised when a backup document has an unknown marker or version."""

    def __init__(self, version: object = None):
        MovesStorageError.__init__(
            self,
            f"Unsupported backup format (version: {version!r})",
            {"version": repr(version)},
        )
        self.reason = "unsupported"
        self.version = version


class CorruptEntryError(MovesStorageError):
    """Raised when a single base64 payload inside a backup cannot be decoded."""

    def __init__(self, collection: str, key: str, cause: Exception | None = None):
        details = {"collection": collection, "key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Corrupt {collection} entry: {key}", details)
        self.collection = collection
        self.key = key
        self.cause = cause


class PersistenceError(MovesStorageError):
    """Raised when a write to the underlying database fails."""

    def __init__(self, operation: str, cause: Exception | None = None):
        details = {"operation": operation}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Persistence failure during {operation}", details)
        self.operation = operation
        self.cause = cause


class SyncError(MovesStorageError):
    """Raised when a reconciliation with remote data cannot proceed."""

    def __init__(self, message: str, item_type: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if item_type:
            details["item_type"] = item_type
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.item_type = item_type
        self.cause = cause


class ThumbnailGenerationError(MovesStorageError):
    """Raised when a thumbnail cannot be rendered from a video blob."""

    def __init__(self, reason: str, thumb_time_ms: int | None = None):
        details: dict = {"reason": reason}
        if thumb_time_ms is not None:
            details["thumb_time_ms"] = thumb_time_ms
        super().__init__(f"Thumbnail generation failed: {reason}", details)
        self.reason = reason
        self.thumb_time_ms = thumb_time_ms
