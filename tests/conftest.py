from __future__ import annotations

import os

# Settings are read at import time; make sure nothing reaches a real project.
os.environ.setdefault("ENV",            "test")
os.environ.setdefault("SUPABASE_URL",   "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY",   "test-anon-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-unit-tests-only")

import pytest
import pytest_asyncio

from fakes import FakeBackend, FakeScheduler
from livesync.change_stream import ChangeStreamClient


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest_asyncio.fixture
async def stream(backend, scheduler):
    client = ChangeStreamClient(
        backend,
        max_retries=5,
        base_delay_ms=2000,
        handshake_timeout=0.05,
        scheduler=scheduler,
    )
    yield client
    await client.dispose()
