"""
Custom exception classes for the Reviewable data migration tool.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class ConfigurationError(MigrationError):
    """Raised when a required input or environment setting is missing or invalid."""


class StoreError(MigrationError):
    """Raised when the backing store rejects or fails a request."""


class MappingError(MigrationError):
    """Raised when a user id has no mapping and ghosting is disabled."""

    user_key: str
    context: str

    def __init__(self, user_key: str, context: str) -> None:
        self.user_key = user_key
        self.context = context
        super().__init__(f"No mapping for user {user_key} at {context}")


class RecordFormatError(MigrationError):
    """Raised when a line of a record file cannot be parsed."""

    line_number: int

    def __init__(self, line_number: int, reason: str) -> None:
        self.line_number = line_number
        super().__init__(f"Malformed record on line {line_number}: {reason}")
