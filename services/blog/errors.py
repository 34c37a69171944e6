"""Error taxonomy of the blog core.

Every failure the services surface is one of these types; the HTTP layer maps
them to status codes in `routes.py`.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    """One failed field check (field name + human-readable message)."""
    field: str
    message: str


class BlogError(Exception):
    """Base class for typed failures raised by the blog core."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BlogError):
    """Caller-correctable input problem; carries every failed field check."""

    status_code = 400

    def __init__(self, errors: list[FieldError]) -> None:
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in errors) or "invalid input")
        self.errors = list(errors)


class InvariantViolation(BlogError):
    """An entity would be constructed or persisted in an impossible state."""

    status_code = 422


class NotFound(BlogError):
    status_code = 404


class IllegalTransition(BlogError):
    """The moderation state machine refuses the requested move."""

    status_code = 409


class ConflictError(BlogError):
    """Optimistic-concurrency mismatch on Post.version."""

    status_code = 409


class Timeout(BlogError):
    """A storage call exceeded its deadline; the transaction was rolled back."""

    status_code = 504


class StorageFailure(BlogError):
    """The underlying store failed; the transaction was rolled back."""

    status_code = 503
