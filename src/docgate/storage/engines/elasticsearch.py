from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
import structlog

from docgate.pipelines.streaming import StopSignal, from_iterable, stream_results
from docgate.platform.config import settings
from docgate.storage.collections import Collection, CollectionRegistry, Document
from docgate.storage.engines.base import Engine
from docgate.storage.errors import BackendError, InvalidQueryError, ValidationError

logger = structlog.get_logger()

# Extra room on top of the current count when dumping a collection, so that
# documents inserted while the dump runs are not silently cut off.
ALL_SIZE_MARGIN = 1000


class ElasticsearchEngine(Engine):
    """
    Elasticsearch implementation of Engine using httpx for async.

    Each collection maps to one index. Queries return ids only; every match
    is then fetched individually (one GET per hit), which makes hydration
    the hot path of search and dump requests.
    """

    name = "elasticsearch"

    def __init__(
        self,
        registry: CollectionRegistry,
        url: Optional[str] = None,
        index_prefix: Optional[str] = None,
        refresh: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.registry = registry
        self._url = url or settings.ELASTICSEARCH_URL
        self._prefix = settings.ELASTICSEARCH_INDEX_PREFIX if index_prefix is None else index_prefix
        self._refresh = refresh or settings.ELASTICSEARCH_REFRESH
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        if not self.client:
            logger.info("connecting_to_elasticsearch", url=self._url)
            self.client = httpx.AsyncClient(
                base_url=self._url,
                timeout=settings.ELASTICSEARCH_TIMEOUT,
                limits=httpx.Limits(max_keepalive_connections=settings.ELASTICSEARCH_MAX_CONNECTIONS),
                transport=self._transport,
            )
        for collection in self.registry:
            await self._ensure_index(collection)

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _ensure_connected(self):
        if not self.client:
            await self.connect()

    async def health_check(self) -> bool:
        await self._ensure_connected()
        try:
            resp = await self.client.get("/_cluster/health")
            return resp.status_code == 200 and resp.json().get("status") in ("green", "yellow")
        except Exception as e:
            logger.error("elasticsearch_health_check_failed", error=str(e))
            return False

    def _index(self, collection: Collection) -> str:
        # Elasticsearch index names must be lowercase
        return f"{self._prefix}{collection.name}".lower()

    def _doc_path(self, collection: Collection, id: str) -> str:
        return f"/{self._index(collection)}/_doc/{quote(id, safe='')}"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        await self._ensure_connected()
        try:
            return await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("elasticsearch_request_failed", method=method, path=path, error=str(e))
            raise BackendError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError(f"undecodable response from elasticsearch: {e}") from e
        if not isinstance(data, dict):
            raise BackendError("unexpected response shape from elasticsearch")
        return data

    @staticmethod
    def _fail(op: str, resp: httpx.Response) -> BackendError:
        logger.error("elasticsearch_unexpected_status", op=op, status=resp.status_code, body=resp.text[:500])
        return BackendError(f"{op} failed with status {resp.status_code}")

    async def _ensure_index(self, collection: Collection) -> None:
        index = self._index(collection)
        resp = await self._request("HEAD", f"/{index}")
        if resp.status_code == 200:
            return
        if resp.status_code != 404:
            raise self._fail("index check", resp)

        resp = await self._request("PUT", f"/{index}")
        if resp.status_code == 200:
            logger.info("created_elasticsearch_index", index=index)
            return
        # Lost a creation race with another gateway instance
        if resp.status_code == 400 and "resource_already_exists_exception" in resp.text:
            return
        raise self._fail("index create", resp)

    async def load(self, collection: Collection, id: str) -> Tuple[bool, Document]:
        if not id:
            return False, {}
        resp = await self._request("GET", self._doc_path(collection, id))
        if resp.status_code == 404:
            return False, {}
        if resp.status_code != 200:
            raise self._fail("load", resp)
        source = self._json(resp).get("_source")
        if not isinstance(source, dict):
            raise BackendError(f"document {id} has no _source in response")
        return True, source

    async def write(self, collection: Collection, id: str, doc: Document) -> None:
        if not id:
            raise ValidationError("missing id")
        params = {} if self._refresh == "false" else {"refresh": self._refresh}
        resp = await self._request("PUT", self._doc_path(collection, id), json=doc, params=params)
        if resp.status_code not in (200, 201):
            raise self._fail("write", resp)

    async def delete(self, collection: Collection, id: str) -> bool:
        if not id:
            raise ValidationError("missing id")
        resp = await self._request("DELETE", self._doc_path(collection, id))
        if resp.status_code == 404:
            return False
        if resp.status_code != 200:
            raise self._fail("delete", resp)
        return True

    async def drop(self, collection: Collection) -> None:
        index = self._index(collection)
        resp = await self._request("DELETE", f"/{index}")
        if resp.status_code not in (200, 404):
            raise self._fail("drop", resp)
        logger.info("dropped_elasticsearch_index", index=index)
        await self._ensure_index(collection)

    async def count(self, collection: Collection) -> int:
        resp = await self._request("GET", f"/{self._index(collection)}/_count")
        if resp.status_code == 404:
            return 0
        if resp.status_code != 200:
            raise self._fail("count", resp)
        count = self._json(resp).get("count")
        if not isinstance(count, int):
            raise BackendError("count response has no integer count")
        return count

    async def _query_ids(self, collection: Collection, query: Dict[str, Any], size: int) -> List[str]:
        """Run a query returning hit ids only (no document bodies)."""
        body = {"query": query, "_source": False, "size": size, "from": 0}
        resp = await self._request("POST", f"/{self._index(collection)}/_search", json=body)
        if resp.status_code == 400:
            logger.warning("elasticsearch_query_rejected", index=self._index(collection), body=resp.text[:500])
            raise InvalidQueryError("invalid query")
        if resp.status_code == 404:
            return []
        if resp.status_code != 200:
            raise self._fail("search", resp)

        hits = self._json(resp).get("hits")
        if not isinstance(hits, dict) or not isinstance(hits.get("hits"), list):
            raise BackendError("unexpected search response shape")
        ids = []
        for hit in hits["hits"]:
            if not isinstance(hit, dict) or not isinstance(hit.get("_id"), str):
                raise BackendError("search hit without an _id")
            ids.append(hit["_id"])
        return ids

    def _hydrator(self, collection: Collection):
        async def hydrate(id: str) -> Optional[Document]:
            found, doc = await self.load(collection, id)
            if not found:
                # Deleted between the id query and the fetch
                logger.warning("search_hit_vanished", collection=collection.name, id=id)
                return None
            return doc

        return hydrate

    async def search(
        self,
        collection: Collection,
        terms: List[str],
        limit: int,
        stop: StopSignal,
    ) -> AsyncIterator[Document]:
        query_string = " ".join(terms).strip()
        if not query_string:
            raise ValidationError("at least one search term is required")
        if limit < 1:
            raise ValidationError("max must be a positive integer")

        ids = await self._query_ids(collection, {"query_string": {"query": query_string}}, limit)
        return stream_results(from_iterable(ids), stop, self._hydrator(collection))

    async def all(self, collection: Collection, stop: StopSignal) -> AsyncIterator[Document]:
        size = await self.count(collection) + ALL_SIZE_MARGIN
        ids = await self._query_ids(collection, {"match_all": {}}, size)
        return stream_results(from_iterable(ids), stop, self._hydrator(collection))

    async def ids(self, collection: Collection, stop: StopSignal) -> AsyncIterator[str]:
        size = await self.count(collection) + ALL_SIZE_MARGIN
        ids = await self._query_ids(collection, {"match_all": {}}, size)
        return stream_results(from_iterable(ids), stop)
