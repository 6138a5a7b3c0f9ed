from __future__ import annotations

from typing import Optional

CODE_MISSING_HIERARCHY = "MISSING_HIERARCHY"
CODE_INVALID_HIERARCHY = "INVALID_HIERARCHY"
CODE_INVALID_SCRIPTS = "INVALID_SCRIPTS"
CODE_INVALID_JSON = "INVALID_JSON"
CODE_PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
CODE_SERVER_ERROR = "SERVER_ERROR"
CODE_NOT_FOUND = "NOT_FOUND"

GENERIC_ERROR_MESSAGE = "An error occurred"


class SyncError(Exception):
    """Base class for studiosync failures."""

    code = CODE_SERVER_ERROR
    status = 500

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(SyncError):
    """Producer payload is missing or malformed. Not retryable as-is."""

    code = CODE_MISSING_HIERARCHY
    status = 400


class TransportError(SyncError):
    """A send to a single observer failed."""

    def __init__(self, message: str, *, connection_id: str) -> None:
        super().__init__(message)
        self.connection_id = connection_id


class DuplicateConnectionError(SyncError, ValueError):
    pass
