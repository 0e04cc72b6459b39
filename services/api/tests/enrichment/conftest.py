"""
Shared fixtures for the enrichment test suite.

Provides a recording fake asyncpg pool for the SQL layer, plus orchestrator
fixtures over the in-memory store from tests/helpers.
"""

from typing import Optional

import pytest

from services.api.enrichment.orchestrator import EnrichmentOrchestrator


# ---------------------------------------------------------------------------
# Fake asyncpg pool / connection
# ---------------------------------------------------------------------------

class FakeRecord(dict):
    """Dict subclass standing in for asyncpg.Record (mapping access, .get)."""


class FakeConnection:
    """Fake asyncpg connection. Results are keyed by a substring of the query."""

    def __init__(self, pool: "FakePool"):
        self._pool = pool

    def _lookup(self, results: dict, query: str, default):
        for needle, value in results.items():
            if needle in query:
                return value
        return default

    async def fetch(self, query: str, *args) -> list:
        self._pool._queries.append((query, args))
        return self._lookup(self._pool._fetch_results, query, [])

    async def fetchrow(self, query: str, *args) -> Optional[FakeRecord]:
        self._pool._queries.append((query, args))
        return self._lookup(self._pool._fetchrow_results, query, None)

    async def execute(self, query: str, *args) -> str:
        if self._pool.execute_error is not None:
            raise self._pool.execute_error
        self._pool._executed.append((query, args))
        return self._lookup(self._pool._execute_results, query, "UPDATE 0")

    def transaction(self):
        self._pool.transactions += 1
        return _FakeTransaction()


class _FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        pass


class FakePool:
    """In-memory fake asyncpg pool for testing."""

    def __init__(self):
        self._fetch_results: dict[str, list] = {}
        self._fetchrow_results: dict[str, Optional[FakeRecord]] = {}
        self._execute_results: dict[str, str] = {}
        self._executed: list[tuple] = []
        self._queries: list[tuple] = []
        self.execute_error: Optional[BaseException] = None
        self.transactions = 0
        self.closed = False

    def acquire(self):
        return _FakePoolAcquire(self)

    async def fetch(self, query: str, *args) -> list:
        return await FakeConnection(self).fetch(query, *args)

    async def fetchrow(self, query: str, *args):
        return await FakeConnection(self).fetchrow(query, *args)

    async def execute(self, query: str, *args) -> str:
        return await FakeConnection(self).execute(query, *args)

    async def close(self):
        self.closed = True


class _FakePoolAcquire:
    def __init__(self, pool: FakePool):
        self._pool = pool

    async def __aenter__(self) -> FakeConnection:
        return FakeConnection(self._pool)

    async def __aexit__(self, *exc):
        pass


@pytest.fixture
def fake_pool():
    """Provide a fresh FakePool for each test."""
    return FakePool()


# ---------------------------------------------------------------------------
# Orchestrator over the in-memory store
# ---------------------------------------------------------------------------

@pytest.fixture
def orchestrator(memory_store, fake_extractor):
    return EnrichmentOrchestrator(memory_store, fake_extractor, fetch_timeout_s=1.0)
