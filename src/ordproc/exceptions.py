"""Custom exceptions for order resolution and API contract errors."""

from typing import Any, Dict, Optional


class ContractError(Exception):
    """Error that maps to a stable API error payload."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class SnapshotError(ValueError):
    """Raised when a caller passes a missing or inconsistent snapshot."""


class ResolutionCancelledError(Exception):
    """Raised when an in-flight resolution is cancelled by the caller."""
