"""
Error taxonomy for catalog resolution and installation.
"""
from __future__ import annotations

from typing import Any, Optional


class CatalogError(Exception):
    """Base class for every error raised by corecatalog."""


class ValidationError(CatalogError):
    """A document does not match its schema and is not a resolvable reference."""

    def __init__(self, errors: Any, url: Optional[str] = None):
        self.errors = errors
        self.url = url
        if isinstance(errors, list):
            message = "Validation error:\n  " + "\n  ".join(str(e) for e in errors)
        else:
            message = str(errors)
        if url:
            message = f"{message} (URL: {url})"
        super().__init__(message)


class NetworkError(CatalogError):
    """Transport failure while fetching a document or downloading a file."""

    def __init__(self, url: str, message: str):
        self.url = url
        # Set once the user has chosen to cancel after this failure.
        self.cancelled = False
        super().__init__(f"{message} (URL: {url})")


class IntegrityError(CatalogError):
    """Downloaded artifact size or SHA-256 does not match its manifest."""

    def __init__(self, url: str, what: str, expected: Any, actual: Any):
        self.url = url
        self.what = what
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{what} mismatch for {url} (actual: {actual}, expected: {expected})"
        )


class SignatureError(CatalogError):
    """Signature missing or invalid on a file that must be signed."""

    def __init__(self, url: str, message: str = "Invalid signature"):
        self.url = url
        super().__init__(f"{message} for file {url}")


class PreconditionFailed(CatalogError, AssertionError):
    """A precondition was violated, e.g. no release could be selected."""

    def __init__(self, message: str):
        super().__init__(f"AssertionError: {message}")
