"""Error taxonomy for kmem.

Engine functions raise these synchronously. The MCP layer maps them to
structured error responses (see kmem.mcp.validation.ErrorCode).
"""

from typing import Any, Dict, Optional


class KmemError(Exception):
    """Base class for all kmem errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.hint = hint


class ValidationError(KmemError, ValueError):
    """Malformed input: missing field, wrong type, value out of range."""


class NotFoundError(KmemError, LookupError):
    """Operation target (entity name or relation triple) does not exist."""


class PersistenceError(KmemError):
    """Raised by storage backends. Never retried by the engine."""


__all__ = [
    "KmemError",
    "ValidationError",
    "NotFoundError",
    "PersistenceError",
]
