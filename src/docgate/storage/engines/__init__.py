from docgate.storage.collections import CollectionRegistry

from .base import Engine
from .elasticsearch import ElasticsearchEngine
from .mongo import MongoEngine

ENGINES = {
    ElasticsearchEngine.name: ElasticsearchEngine,
    MongoEngine.name: MongoEngine,
}


def create_engine(kind: str, registry: CollectionRegistry) -> Engine:
    """Build the engine selected at startup."""
    try:
        engine_cls = ENGINES[kind.lower()]
    except KeyError:
        raise ValueError(f"unknown engine {kind!r}, expected one of {sorted(ENGINES)}")
    return engine_cls(registry)


__all__ = ["Engine", "ElasticsearchEngine", "MongoEngine", "ENGINES", "create_engine"]
