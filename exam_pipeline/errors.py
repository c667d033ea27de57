from __future__ import annotations


class ExtractionValidationError(ValueError):
    """Raised when an extraction payload fails structural checks; the attempt is retried."""


class KeyBuildError(ValueError):
    """Raised when a record lacks the period precision needed for a join key."""


class AuthorizationError(PermissionError):
    """Raised before any work starts when the caller may not write to the catalog."""


class DuplicateQuestionError(ValueError):
    """Raised by the store when the duplicate policy rejects an existing storage key."""


__all__ = [
    "AuthorizationError",
    "DuplicateQuestionError",
    "ExtractionValidationError",
    "KeyBuildError",
]
