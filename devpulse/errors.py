"""Error taxonomy shared by the ingestion, storage and query layers."""

from typing import Any, Dict, Optional


class DevPulseError(Exception):
    """Base class for all service errors."""


class ValidationError(DevPulseError):
    """A producer payload is malformed or incomplete. Never persisted."""


class StorageError(DevPulseError):
    """The database is unavailable or a read/write failed."""


class DeserializationError(DevPulseError):
    """A stored document column could not be decoded."""

    def __init__(self, column: str, reason: str):
        super().__init__(f"column '{column}' is not a valid document: {reason}")
        self.column = column


class NotFoundError(DevPulseError):
    """A filtered query matched no rows."""

    def __init__(self, message: str, parameters: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.parameters = parameters or {}
