from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailable(Exception):
    """The revocation store could not be reached or did not answer in time.

    ``operation`` names the store call that failed. The underlying driver error
    is chained as ``__cause__`` for logging and is never part of ``message``.
    """

    def __init__(self, operation: str, message: str = "revocation store unavailable"):
        super().__init__(message)
        self.operation = operation
        self.message = message


__all__ = ["ConstraintViolation", "StoreUnavailable"]
