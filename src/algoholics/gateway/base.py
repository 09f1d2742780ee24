"""Gateway contract consumed by the sync controller.

A gateway is a hosted table store with CRUD plus a change-notification
stream per table. Notifications carry no payload guarantee beyond
"something changed in this table"; consumers refetch.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

ChangeCallback = Callable[[str], None]

# Listing order per table
ORDERING: dict[str, tuple[str, bool]] = {
    "members": ("created_at", False),
    "problems": ("created_at", False),
    "submissions": ("updated_at", True),
}

_handle_ids = itertools.count(1)


@dataclass(eq=False)
class Subscription:
    """Handle returned by ``Gateway.subscribe``."""

    table: str
    callback: ChangeCallback
    id: int = field(default_factory=lambda: next(_handle_ids))
    active: bool = True


class Gateway(Protocol):
    """Table store with change notifications."""

    async def list(self, table: str, match: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Rows of ``table``, optionally filtered by column equality, in table order."""
        ...

    async def insert(self, table: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a row. Raises UniqueConstraintError on uniqueness violations."""
        ...

    async def update(self, table: str, match: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
        """Update the matching row. Raises NotFoundError when nothing matched."""
        ...

    async def upsert(self, table: str, fields: dict[str, Any], conflict: tuple[str, ...]) -> dict[str, Any]:
        """Insert, or update the row conflicting on ``conflict`` columns, atomically."""
        ...

    async def delete(self, table: str, match: dict[str, Any]) -> None:
        ...

    async def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        ...

    async def unsubscribe(self, subscription: Subscription) -> None:
        ...

    async def close(self) -> None:
        ...
