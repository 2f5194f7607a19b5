"""
Router for document endpoints.

    GET    /{collection}/search?term=..&max=N   NDJSON stream of matches
    GET    /{collection}/count                  document count as plain text
    GET    /{collection}/__ids                  NDJSON stream of identifiers
    GET    /{collection}/{id}                   one document
    PUT    /{collection}/{id}                   upsert one document
    DELETE /{collection}/{id}                   delete one document
    DELETE /{collection}/                       drop the collection
    PUT    /{collection}/                       bulk ingest a stream of documents
    GET    /{collection}/                       NDJSON stream of every document
"""

import json
from typing import Annotated, Any, AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from docgate.api.dependencies import get_collection, get_engine
from docgate.pipelines.ingestion import bulk_write
from docgate.pipelines.streaming import StopSignal
from docgate.platform.config import settings
from docgate.platform.logging import get_logger
from docgate.platform.metrics import BULK_REQUESTS, DOCUMENTS_WRITTEN, STREAMED_DOCUMENTS
from docgate.storage.collections import Collection, extract_id
from docgate.storage.engines import Engine
from docgate.storage.errors import GatewayError, NotFoundError, ValidationError

logger = get_logger(__name__)

router = APIRouter()

NDJSON = "application/x-ndjson"


def _line(item: Any, collection: Collection, operation: str) -> str:
    STREAMED_DOCUMENTS.labels(collection=collection.name, operation=operation).inc()
    return json.dumps(item, default=str) + "\n"


async def _ndjson(
    first: List[Any],
    stream: AsyncIterator[Any],
    stop: StopSignal,
    collection: Collection,
    operation: str,
) -> AsyncIterator[str]:
    """Encode a result stream as newline-delimited JSON, stopping the producer on exit."""
    try:
        for item in first:
            yield _line(item, collection, operation)
        async for item in stream:
            yield _line(item, collection, operation)
    except GatewayError as e:
        # Headers are already sent; all we can do is end the body early
        logger.error("stream_aborted", collection=collection.name, operation=operation, error=e.message)
    finally:
        stop.stop()
        await stream.aclose()


async def _stream_response(
    stream: AsyncIterator[Any],
    stop: StopSignal,
    collection: Collection,
    operation: str,
) -> StreamingResponse:
    """
    Start a streaming response once the first result is in hand.

    Lazy backends (cursors, per-hit hydration) only fail on the first fetch;
    pulling it before the headers go out lets that failure become an error
    status instead of an empty 200 body.
    """
    try:
        first = [await stream.__anext__()]
    except StopAsyncIteration:
        first = []
    except Exception:
        stop.stop()
        await stream.aclose()
        raise
    return StreamingResponse(_ndjson(first, stream, stop, collection, operation), media_type=NDJSON)


def _parse_max(raw: Optional[str]) -> int:
    if raw is None:
        return settings.SEARCH_DEFAULT_MAX
    try:
        return int(raw)
    except ValueError:
        return settings.SEARCH_DEFAULT_MAX


def _parse_document(body: bytes) -> dict:
    try:
        doc = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"malformed JSON body: {e}")
    if not isinstance(doc, dict):
        raise ValidationError("request body must be a JSON object")
    return doc


@router.get("/{collection}/search")
async def search_documents(
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
    term: List[str] = Query(default=[]),
    max_: Optional[str] = Query(default=None, alias="max"),
):
    """
    Search a collection. Every `term` is joined into one query string.
    """
    stop = StopSignal()
    stream = await engine.search(collection, term, _parse_max(max_), stop)
    return await _stream_response(stream, stop, collection, "search")


@router.get("/{collection}/count")
async def count_documents(
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    return PlainTextResponse(str(await engine.count(collection)))


@router.get("/{collection}/__ids")
async def list_ids(
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    stop = StopSignal()
    stream = await engine.ids(collection, stop)
    return await _stream_response(stream, stop, collection, "ids")


@router.get("/{collection}/{id}")
async def read_document(
    id: str,
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    found, doc = await engine.load(collection, id)
    if not found:
        raise NotFoundError(f"document with id {id} was not found")
    return Response(json.dumps(doc, default=str), media_type="application/json")


@router.put("/{collection}/{id}")
async def write_document(
    id: str,
    request: Request,
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    """
    Upsert one document. Its identifying field must equal the path id.
    """
    doc = _parse_document(await request.body())
    if extract_id(doc) != id:
        raise ValidationError("id does not match")

    try:
        await engine.write(collection, id, doc)
    except GatewayError:
        DOCUMENTS_WRITTEN.labels(collection=collection.name, outcome="error").inc()
        raise
    DOCUMENTS_WRITTEN.labels(collection=collection.name, outcome="ok").inc()
    return Response(status_code=status.HTTP_200_OK)


@router.delete("/{collection}/{id}")
async def delete_document(
    id: str,
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    if not await engine.delete(collection, id):
        raise NotFoundError(f"document with id {id} was not found")
    return Response(status_code=status.HTTP_200_OK)


@router.delete("/{collection}/")
async def drop_collection(
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    await engine.drop(collection)
    return Response(status_code=status.HTTP_200_OK)


@router.put("/{collection}/")
async def bulk_write_documents(
    request: Request,
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    """
    Bulk ingest a stream of JSON documents.

    A failed response does not mean nothing was written: any subset of the
    input may have been applied, and nothing is rolled back.
    """
    result = await bulk_write(
        engine,
        collection,
        request.stream(),
        workers=settings.BULK_WORKERS,
        queue_size=settings.BULK_QUEUE_SIZE,
    )
    if result.ok:
        BULK_REQUESTS.labels(collection=collection.name, outcome="ok").inc()
        return JSONResponse({"written": result.written})

    BULK_REQUESTS.labels(collection=collection.name, outcome="error").inc()
    first = result.first_error
    status_code = first.status_code if isinstance(first, GatewayError) else status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(
        {"written": result.written, "errors": [str(e) for e in result.errors]},
        status_code=status_code,
    )


@router.get("/{collection}/")
async def dump_documents(
    collection: Annotated[Collection, Depends(get_collection)],
    engine: Annotated[Engine, Depends(get_engine)],
):
    stop = StopSignal()
    stream = await engine.all(collection, stop)
    return await _stream_response(stream, stop, collection, "all")
