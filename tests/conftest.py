"""
Pytest configuration and shared fixtures.
"""

import asyncio
import copy
import os
import sys
from typing import Dict, List, Tuple

import pytest

sys.path.append(os.path.join(os.getcwd(), "src"))

from docgate.pipelines.streaming import StopSignal, from_iterable, stream_results  # noqa: E402
from docgate.storage.collections import Collection, CollectionRegistry, Document  # noqa: E402
from docgate.storage.engines.base import Engine  # noqa: E402
from docgate.storage.errors import ValidationError  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> None:
    """Set up test environment variables."""
    os.environ.setdefault("APP_ENV", "test")
    os.environ.setdefault("DEBUG", "true")


class MemoryEngine(Engine):
    """In-memory Engine used to exercise the pipelines and the API."""

    name = "memory"

    def __init__(self, registry: CollectionRegistry | None = None):
        self.registry = registry or CollectionRegistry()
        self.data: Dict[str, Dict[str, Document]] = {}
        self.writes: List[Tuple[str, str]] = []
        self.loads = 0
        self.closed = 0
        self.fail_ids: set[str] = set()

    async def connect(self) -> None:
        for collection in self.registry:
            self.data.setdefault(collection.name, {})

    async def close(self) -> None:
        self.closed += 1

    async def health_check(self) -> bool:
        return True

    async def load(self, collection: Collection, id: str) -> Tuple[bool, Document]:
        self.loads += 1
        await asyncio.sleep(0)
        doc = self.data.get(collection.name, {}).get(id)
        if doc is None:
            return False, {}
        return True, copy.deepcopy(doc)

    async def write(self, collection: Collection, id: str, doc: Document) -> None:
        if not id:
            raise ValidationError("missing id")
        if id in self.fail_ids:
            raise RuntimeError(f"backend refused {id}")
        # Let other workers run between writes
        await asyncio.sleep(0)
        self.writes.append((collection.name, id))
        self.data.setdefault(collection.name, {})[id] = copy.deepcopy(doc)

    async def delete(self, collection: Collection, id: str) -> bool:
        return self.data.get(collection.name, {}).pop(id, None) is not None

    async def drop(self, collection: Collection) -> None:
        self.data[collection.name] = {}

    async def count(self, collection: Collection) -> int:
        return len(self.data.get(collection.name, {}))

    async def search(self, collection: Collection, terms: List[str], limit: int, stop: StopSignal):
        words = " ".join(terms).split()
        ids = [
            id
            for id, doc in self.data.get(collection.name, {}).items()
            if all(word in str(doc.values()) for word in words)
        ][:limit]
        return stream_results(from_iterable(ids), stop, self._hydrate(collection))

    async def all(self, collection: Collection, stop: StopSignal):
        ids = list(self.data.get(collection.name, {}))
        return stream_results(from_iterable(ids), stop, self._hydrate(collection))

    async def ids(self, collection: Collection, stop: StopSignal):
        return stream_results(from_iterable(list(self.data.get(collection.name, {}))), stop)

    def _hydrate(self, collection: Collection):
        async def hydrate(id: str):
            found, doc = await self.load(collection, id)
            return doc if found else None

        return hydrate


@pytest.fixture
def memory_engine() -> MemoryEngine:
    return MemoryEngine()


@pytest.fixture
def content() -> Collection:
    return Collection(name="content")
