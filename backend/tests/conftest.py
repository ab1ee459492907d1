import asyncio
import os
import random

# Must be set before config.settings is first imported
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("POLL_INTERVAL_SECONDS", "3600")

import pytest

from services.auth import AnonymousAuthProvider
from services.session_facade import SessionFacade
from services.session_store import MemorySessionStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def facade(store, clock):
    return SessionFacade(store, AnonymousAuthProvider(), rng=random.Random(7), clock=clock)


class YieldingStore(MemorySessionStore):
    """Memory store that gives other tasks a turn before every call, as a network store would."""

    async def get_document(self, path):
        await asyncio.sleep(0)
        return await super().get_document(path)

    async def set_document(self, path, value):
        await asyncio.sleep(0)
        await super().set_document(path, value)

    async def update_document(self, path, partial):
        await asyncio.sleep(0)
        await super().update_document(path, partial)

    async def transact(self, path, decide):
        await asyncio.sleep(0)
        return await super().transact(path, decide)


@pytest.fixture
def yielding_store():
    return YieldingStore()


@pytest.fixture
def yielding_facade(yielding_store, clock):
    return SessionFacade(yielding_store, AnonymousAuthProvider(), rng=random.Random(7), clock=clock)
