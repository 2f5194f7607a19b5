from typing import Annotated

from fastapi import Depends

from docgate.platform.config import settings
from docgate.platform.logging import get_logger
from docgate.storage.collections import Collection, CollectionRegistry
from docgate.storage.engines import Engine, create_engine

logger = get_logger(__name__)

# Singletons
_registry: CollectionRegistry | None = None
_engine: Engine | None = None


def get_registry() -> CollectionRegistry:
    global _registry
    if _registry is None:
        _registry = CollectionRegistry.from_settings(settings.COLLECTIONS, binary_ids=settings.BINARY_IDS)
    return _registry


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine(settings.ENGINE, get_registry())
    return _engine


def get_collection(
    collection: str,
    registry: Annotated[CollectionRegistry, Depends(get_registry)],
) -> Collection:
    """Resolve the {collection} path parameter to its descriptor."""
    return registry.resolve(collection)


async def init_resources() -> None:
    """Build the engine, connect it and ensure indexes for every known collection."""
    engine = get_engine()
    logger.info("connecting_engine", engine=engine.name, collections=len(get_registry()))
    await engine.connect()


async def close_resources() -> None:
    """Close the engine. Runs once, during shutdown."""
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None
