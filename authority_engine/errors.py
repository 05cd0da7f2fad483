"""
Authority Engine errors.

Pure tree functions raise loudly on malformed input. Toggle preconditions
raise before anything is committed or dispatched. Remote failures are
recovered by rollback in the controller and surfaced as a generic
``PermissionUpdateFailed``.
"""

from __future__ import annotations

from typing import Any


class AuthorityEngineError(Exception):
    """Base class for all authority engine errors."""
    pass


class MalformedTreeError(AuthorityEngineError):
    """Raised when a permission tree is not a well-formed tree."""
    pass


class ToggleRejectedError(AuthorityEngineError):
    """Raised when a toggle fails its preconditions. Nothing was changed."""

    def __init__(self, program_id: int, field: str, reason: str) -> None:
        super().__init__(f"Toggle of {field} on program {program_id} rejected: {reason}")
        self.program_id = program_id
        self.field = field


class CeilingViolationError(ToggleRejectedError):
    """Raised when a toggle asks for more than the acting user may grant."""
    pass


class ReadRequiredError(ToggleRejectedError):
    """Raised when create/delete or update is granted without read."""
    pass


class RemoteRejectedError(AuthorityEngineError):
    """Raised when the remote store fails or refuses a request."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class PermissionUpdateFailed(AuthorityEngineError):
    """Raised by a toggle whose remote update failed and was rolled back."""

    def __init__(self, record: Any) -> None:
        super().__init__("update failed")
        self.record = record


class CopySourceUnavailableError(AuthorityEngineError):
    """Raised when the source authority of a bulk copy cannot be fetched."""
    pass


class OwnershipMismatchError(AuthorityEngineError):
    """Raised when a bulk copy source belongs to a different owner scope."""
    pass


class DraftValidationError(AuthorityEngineError):
    """Raised when a new authority draft cannot be submitted."""

    def __init__(self, errors: dict[str, str]) -> None:
        detail = "; ".join(f"{k}: {v}" for k, v in errors.items())
        super().__init__(f"Invalid authority draft: {detail}")
        self.errors = errors
