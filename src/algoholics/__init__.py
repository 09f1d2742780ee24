"""Realtime data layer for the AlgoHolics collaborative practice tracker."""

from algoholics.errors import (
    DuplicateError,
    GatewayError,
    NotFoundError,
    TrackerError,
    UniqueConstraintError,
    ValidationError,
)
from algoholics.models import Member, Problem, Snapshot, Submission
from algoholics.store import EntityStore
from algoholics.sync import SyncController

__all__ = [
    "DuplicateError",
    "EntityStore",
    "GatewayError",
    "Member",
    "NotFoundError",
    "Problem",
    "Snapshot",
    "Submission",
    "SyncController",
    "TrackerError",
    "UniqueConstraintError",
    "ValidationError",
]
