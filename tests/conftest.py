"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterator

import pytest
import pytest_asyncio

from algoholics.config import get_settings
from algoholics.gateway import MemoryGateway
from algoholics.sync import SyncController


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest_asyncio.fixture
async def controller(gateway: MemoryGateway) -> AsyncGenerator[SyncController, None]:
    """Started controller on an empty in-memory gateway."""
    ctrl = SyncController(gateway)
    await ctrl.start()
    yield ctrl
    await ctrl.stop()
