from typing import Any, AsyncIterator, List, Optional, Tuple

import structlog
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.errors import CollectionInvalid, PyMongoError

from docgate.pipelines.streaming import StopSignal, stream_results
from docgate.platform.config import settings
from docgate.storage.collections import Collection, CollectionRegistry, Document
from docgate.storage.engines.base import Engine
from docgate.storage.errors import BackendError, CapabilityNotSupportedError, ValidationError

logger = structlog.get_logger()

MONGO_ID = "_id"


class MongoEngine(Engine):
    """
    MongoDB implementation of Engine using the pymongo async client.

    Documents are upserted by the collection's identifying field, which has
    a unique index. With binary ids enabled the field is stored as a BSON
    UUID and translated back to its string form on every read.
    """

    name = "mongodb"

    def __init__(
        self,
        registry: CollectionRegistry,
        url: Optional[str] = None,
        database: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        self.registry = registry
        self._url = url or settings.MONGO_URL
        self._db_name = database or settings.MONGO_DATABASE
        self.client = client

    async def connect(self) -> None:
        if not self.client:
            logger.info("connecting_to_mongodb", url=self._url, database=self._db_name)
            self.client = AsyncMongoClient(self._url)
        for collection in self.registry:
            await self.ensure_indexes(collection)

    async def close(self) -> None:
        if self.client:
            await self.client.close()
            self.client = None

    async def _ensure_connected(self):
        if not self.client:
            await self.connect()

    @property
    def db(self):
        return self.client[self._db_name]

    async def _coll(self, collection: Collection):
        await self._ensure_connected()
        return self.db[collection.name]

    async def health_check(self) -> bool:
        await self._ensure_connected()
        try:
            await self.client.admin.command("ping")
            return True
        except Exception as e:
            logger.error("mongodb_health_check_failed", error=str(e))
            return False

    async def ensure_indexes(self, collection: Collection) -> None:
        """Create the collection if needed and a unique index on its id field."""
        await self._ensure_connected()
        try:
            try:
                await self.db.create_collection(collection.name)
            except CollectionInvalid:
                pass
            await self.db[collection.name].create_index(
                [(collection.id_field, ASCENDING)],
                unique=True,
            )
        except PyMongoError as e:
            logger.error(
                "ensure_indexes_failed",
                collection=collection.name,
                id_field=collection.id_field,
                error=str(e),
            )
            raise BackendError(f"creating index on {collection.name}.{collection.id_field} failed: {e}") from e

    def _clean(self, collection: Collection, doc: Document) -> Document:
        doc.pop(MONGO_ID, None)
        if collection.id_field in doc:
            doc[collection.id_field] = collection.id_codec.decode(doc[collection.id_field])
        return doc

    async def load(self, collection: Collection, id: str) -> Tuple[bool, Document]:
        if not id:
            return False, {}
        try:
            key = collection.id_codec.encode(id)
        except ValidationError:
            # no stored document can carry an identifier the codec rejects
            return False, {}
        coll = await self._coll(collection)
        try:
            doc = await coll.find_one({collection.id_field: key})
        except PyMongoError as e:
            logger.error("load_failed", collection=collection.name, id=id, error=str(e))
            raise BackendError(f"load failed: {e}") from e
        if doc is None:
            return False, {}
        return True, self._clean(collection, doc)

    async def write(self, collection: Collection, id: str, doc: Document) -> None:
        if not id:
            raise ValidationError("missing id")
        key = collection.id_codec.encode(id)
        stored = dict(doc)
        stored.pop(MONGO_ID, None)
        stored[collection.id_field] = key
        coll = await self._coll(collection)
        try:
            await coll.replace_one({collection.id_field: key}, stored, upsert=True)
        except PyMongoError as e:
            logger.error("write_failed", collection=collection.name, id=id, error=str(e))
            raise BackendError(f"write failed: {e}") from e

    async def delete(self, collection: Collection, id: str) -> bool:
        if not id:
            raise ValidationError("missing id")
        try:
            key = collection.id_codec.encode(id)
        except ValidationError:
            return False
        coll = await self._coll(collection)
        try:
            result = await coll.delete_one({collection.id_field: key})
        except PyMongoError as e:
            logger.error("delete_failed", collection=collection.name, id=id, error=str(e))
            raise BackendError(f"delete failed: {e}") from e
        return result.deleted_count > 0

    async def drop(self, collection: Collection) -> None:
        await self._ensure_connected()
        try:
            await self.db.drop_collection(collection.name)
        except PyMongoError as e:
            logger.error("drop_failed", collection=collection.name, error=str(e))
            raise BackendError(f"drop failed: {e}") from e
        logger.info("dropped_mongodb_collection", collection=collection.name)
        await self.ensure_indexes(collection)

    async def count(self, collection: Collection) -> int:
        coll = await self._coll(collection)
        try:
            return await coll.count_documents({})
        except PyMongoError as e:
            logger.error("count_failed", collection=collection.name, error=str(e))
            raise BackendError(f"count failed: {e}") from e

    async def search(
        self,
        collection: Collection,
        terms: List[str],
        limit: int,
        stop: StopSignal,
    ) -> AsyncIterator[Document]:
        raise CapabilityNotSupportedError("search is not supported by the mongodb engine")

    async def _documents(self, collection: Collection, cursor) -> AsyncIterator[Document]:
        try:
            async for doc in cursor:
                yield self._clean(collection, doc)
        finally:
            await cursor.close()

    async def _ids(self, collection: Collection, cursor) -> AsyncIterator[str]:
        try:
            async for doc in cursor:
                yield collection.id_codec.decode(doc.get(collection.id_field))
        finally:
            await cursor.close()

    async def all(self, collection: Collection, stop: StopSignal) -> AsyncIterator[Document]:
        coll = await self._coll(collection)
        cursor = coll.find({})
        return stream_results(self._documents(collection, cursor), stop)

    async def ids(self, collection: Collection, stop: StopSignal) -> AsyncIterator[str]:
        coll = await self._coll(collection)
        cursor = coll.find({}, projection={collection.id_field: True, MONGO_ID: False})
        return stream_results(self._ids(collection, cursor), stop)
