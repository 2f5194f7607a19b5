"""
Engine capability contract shared by every backend variant.
"""
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Tuple

from docgate.pipelines.streaming import StopSignal
from docgate.storage.collections import Collection, Document


class Engine(ABC):
    """
    Abstract interface for a document backend.

    One engine is built at startup and shared by every request; it owns the
    backend connection and must be safe for concurrent use. Search, all and
    ids issue their backend query when called and return a lazy stream that
    stops producing once `stop` fires.
    """

    name = "engine"

    @abstractmethod
    async def connect(self) -> None:
        """Open the backend connection and ensure indexes for known collections."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the backend connection."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backend is reachable."""
        pass

    @abstractmethod
    async def load(self, collection: Collection, id: str) -> Tuple[bool, Document]:
        """
        Fetch one document.

        Returns:
            (True, document) when present, (False, {}) when missing.
        """
        pass

    @abstractmethod
    async def write(self, collection: Collection, id: str, doc: Document) -> None:
        """Create or fully replace the document stored under `id`."""
        pass

    @abstractmethod
    async def delete(self, collection: Collection, id: str) -> bool:
        """Remove one document. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def drop(self, collection: Collection) -> None:
        """Remove every document and restore required indexes. Idempotent."""
        pass

    @abstractmethod
    async def count(self, collection: Collection) -> int:
        pass

    @abstractmethod
    async def search(
        self,
        collection: Collection,
        terms: List[str],
        limit: int,
        stop: StopSignal,
    ) -> AsyncIterator[Document]:
        """
        Full-text search.

        Raises:
            CapabilityNotSupportedError: backend has no search capability
            InvalidQueryError: backend rejected the query
        """
        pass

    @abstractmethod
    async def all(self, collection: Collection, stop: StopSignal) -> AsyncIterator[Document]:
        """Every document in the collection, in backend-defined order."""
        pass

    @abstractmethod
    async def ids(self, collection: Collection, stop: StopSignal) -> AsyncIterator[str]:
        """Every identifier in the collection, without document bodies."""
        pass
