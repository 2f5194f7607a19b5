"""docgate Storage Layer - Collections, identifier codecs and backend engines (Elasticsearch, MongoDB)."""

from .collections import (
    BinaryUuidIdCodec,
    Collection,
    CollectionRegistry,
    Document,
    IdCodec,
    StringIdCodec,
    extract_id,
)
from .errors import (
    BackendError,
    CapabilityNotSupportedError,
    GatewayError,
    InvalidQueryError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "BinaryUuidIdCodec",
    "Collection",
    "CollectionRegistry",
    "Document",
    "IdCodec",
    "StringIdCodec",
    "extract_id",
    "BackendError",
    "CapabilityNotSupportedError",
    "GatewayError",
    "InvalidQueryError",
    "NotFoundError",
    "ValidationError",
]
