"""
Collection descriptors and identifier handling.

A Collection names a bucket of schemaless documents and says which field
identifies them. Identifiers travel as strings at the gateway boundary;
an IdCodec translates them to whatever the backend stores natively.
"""
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from bson.binary import Binary, UuidRepresentation

from docgate.storage.errors import BackendError, ValidationError

Document = Dict[str, Any]

DEFAULT_ID_FIELD = "uuid"

# Fixed lookup order used when an identifier must be read from a document body.
ID_FIELDS = ("uuid", "id")

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


class IdCodec(ABC):
    """Translates identifiers between their string form and the backend form."""

    binary = False

    @abstractmethod
    def encode(self, id: str) -> Any:
        pass

    @abstractmethod
    def decode(self, value: Any) -> str:
        pass


class StringIdCodec(IdCodec):
    """Identifiers are stored as plain strings."""

    def encode(self, id: str) -> Any:
        return id

    def decode(self, value: Any) -> str:
        if not isinstance(value, str):
            raise BackendError(f"unexpected identifier value of type {type(value).__name__}")
        return value


class BinaryUuidIdCodec(IdCodec):
    """Identifiers are UUID strings stored as BSON binary subtype 4."""

    binary = True

    def encode(self, id: str) -> Any:
        try:
            parsed = uuid.UUID(id)
        except (ValueError, TypeError, AttributeError):
            raise ValidationError(f"identifier {id!r} is not a valid UUID")
        return Binary.from_uuid(parsed, UuidRepresentation.STANDARD)

    def decode(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, Binary):
            try:
                return str(value.as_uuid(UuidRepresentation.STANDARD))
            except ValueError as e:
                raise BackendError(f"stored identifier is not a UUID: {e}")
        raise BackendError(f"unexpected identifier value of type {type(value).__name__}")


@dataclass(frozen=True)
class Collection:
    """A named bucket of documents sharing an identifying-field convention."""

    name: str
    id_field: str = DEFAULT_ID_FIELD
    id_codec: IdCodec = field(default_factory=StringIdCodec, compare=False)

    @property
    def binary_ids(self) -> bool:
        return self.id_codec.binary


def validate_collection_name(name: str) -> str:
    if not name or not _NAME_RE.match(name):
        raise ValidationError(f"invalid collection name {name!r}")
    return name


def extract_id(doc: Document) -> str:
    """
    Read the identifier from a document body.

    Looks at "uuid" first, then "id"; the first one holding a string wins.

    Raises:
        ValidationError: if neither field holds a string.
    """
    for key in ID_FIELDS:
        value = doc.get(key)
        if isinstance(value, str):
            return value
    raise ValidationError("document has no string 'uuid' or 'id' field")


class CollectionRegistry:
    """Known collections, resolved by name for every request."""

    def __init__(self, collections: Optional[Dict[str, Collection]] = None, binary_ids: bool = False):
        self._codec: IdCodec = BinaryUuidIdCodec() if binary_ids else StringIdCodec()
        self._collections: Dict[str, Collection] = dict(collections or {})

    @classmethod
    def from_settings(cls, spec: str, binary_ids: bool = False) -> "CollectionRegistry":
        """
        Build a registry from a "name:id_field,name2:id_field2" string.

        A name without ":id_field" uses the default identifying field.
        """
        registry = cls(binary_ids=binary_ids)
        for entry in spec.split(","):
            entry = entry.strip()
            if not entry:
                continue
            name, _, id_field = entry.partition(":")
            registry.add(name.strip(), id_field.strip() or DEFAULT_ID_FIELD)
        return registry

    def add(self, name: str, id_field: str = DEFAULT_ID_FIELD) -> Collection:
        collection = Collection(
            name=validate_collection_name(name),
            id_field=id_field,
            id_codec=self._codec,
        )
        self._collections[name] = collection
        return collection

    def resolve(self, name: str) -> Collection:
        """Return the configured descriptor, or a default one for unknown names."""
        collection = self._collections.get(name)
        if collection is not None:
            return collection
        return Collection(
            name=validate_collection_name(name),
            id_field=DEFAULT_ID_FIELD,
            id_codec=self._codec,
        )

    def __iter__(self):
        return iter(self._collections.values())

    def __len__(self) -> int:
        return len(self._collections)
