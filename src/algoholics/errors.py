"""Error taxonomy shared by the gateway, the sync controller and callers.

``DuplicateError`` and ``UniqueConstraintError`` are both ``GatewayError``
subtypes: a uniqueness rejection is a backend failure that additionally
names the offending field.
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all tracker errors."""


class ValidationError(TrackerError, ValueError):
    """A required field is empty."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} must not be empty")


class GatewayError(TrackerError):
    """Network or backend failure, including partially applied deletes."""


class UniqueConstraintError(GatewayError):
    """Structured uniqueness violation reported by a gateway."""

    def __init__(self, column: str, table: str | None = None) -> None:
        self.column = column
        self.table = table
        where = f"{table}.{column}" if table else column
        super().__init__(f"unique constraint violated on {where}")


class DuplicateError(GatewayError):
    """Uniqueness violation surfaced to callers, tagged with the field."""

    MESSAGES = {
        "name": "A member with this name already exists",
        "title": "A problem with this title already exists",
        "link": "A problem with this link already exists",
    }

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(self.MESSAGES.get(field, f"Duplicate value for {field}"))


class NotFoundError(TrackerError):
    """Operation targeted a row that is no longer present."""
