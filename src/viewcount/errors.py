from abc import ABC


class UserError(ABC, Exception):
    """Base class for user-facing errors.

    All errors that inherit from UserError may have their messages
    surfaced to the user as a notice. These errors should not contain
    raw stack traces or file contents.
    """


class NotFoundError(UserError):
    """Raised when a requested item does not exist in the vault."""

    def __init__(self, message: str = "Item not found") -> None:
        super().__init__(message)


class StoreIOError(UserError):
    """Raised when the counter snapshot or settings record cannot be read or written."""


class CorruptStoreError(UserError):
    """Raised when the counter snapshot cannot be parsed."""

    def __init__(self, message: str = "Counter store is corrupt") -> None:
        super().__init__(message)


class MigrationError(UserError):
    """Raised when a data migration side effect fails."""
