"""Table-store gateways with change notifications."""

from algoholics.gateway.base import ORDERING, ChangeCallback, Gateway, Subscription
from algoholics.gateway.memory import MemoryGateway
from algoholics.gateway.postgres import PostgresGateway

__all__ = [
    "ORDERING",
    "ChangeCallback",
    "Gateway",
    "MemoryGateway",
    "PostgresGateway",
    "Subscription",
]
