"""
Bulk ingestion pipeline.

One producer decodes JSON documents from the request body into a bounded
queue; a fixed pool of workers pulls documents off the queue and writes
them to the engine.

Failure semantics are at-least-applied, not atomic: the producer stops on
its first decode error and each worker stops on its own first write
error, but sibling workers keep writing whatever is already queued. A
failed bulk call therefore leaves an unknown subset of the input applied
and nothing is rolled back.
"""

import asyncio
import codecs
import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterable, AsyncIterator, Iterator, List, Optional

from docgate.platform.logging import get_logger
from docgate.platform.metrics import DOCUMENTS_WRITTEN
from docgate.storage.collections import Collection, Document, extract_id
from docgate.storage.errors import ValidationError

if TYPE_CHECKING:
    from docgate.storage.engines.base import Engine

logger = get_logger(__name__)

DEFAULT_WORKERS = 8
DEFAULT_QUEUE_SIZE = 16

# Largest single document held while waiting for it to complete
MAX_PENDING_CHARS = 16 * 1024 * 1024

_NON_WHITESPACE = re.compile(r"\S")
_STRUCTURAL = re.compile(r'[{}\[\]"]')
_STRING_SPECIAL = re.compile(r'["\\]')
_DONE = object()


class DocumentSplitter:
    """
    Cuts a stream of text into the source of successive top-level JSON objects.

    Only newly fed text is scanned, and only for brackets and string
    delimiters, so a document spread over many chunks costs one pass plus
    one json.loads once its closing brace arrives.
    """

    def __init__(self) -> None:
        self._parts: List[str] = []
        self._held = 0
        self._depth = 0
        self._in_string = False
        self._escaped = False

    @property
    def pending(self) -> bool:
        return self._depth > 0

    def feed(self, text: str) -> Iterator[str]:
        pos = 0
        start = 0
        n = len(text)
        while pos < n:
            if self._depth == 0:
                m = _NON_WHITESPACE.search(text, pos)
                if m is None:
                    break
                if m.group() != "{":
                    raise ValidationError("expected a JSON object")
                start = m.start()
                pos = m.end()
                self._depth = 1
                continue
            if self._escaped:
                self._escaped = False
                pos += 1
                continue
            if self._in_string:
                m = _STRING_SPECIAL.search(text, pos)
                if m is None:
                    break
                pos = m.end()
                if m.group() == "\\":
                    self._escaped = True
                else:
                    self._in_string = False
                continue

            m = _STRUCTURAL.search(text, pos)
            if m is None:
                break
            pos = m.end()
            char = m.group()
            if char == '"':
                self._in_string = True
            elif char in "{[":
                self._depth += 1
            else:
                self._depth -= 1
                if self._depth == 0:
                    self._parts.append(text[start:pos])
                    source = "".join(self._parts)
                    self._parts = []
                    self._held = 0
                    yield source

        if self._depth:
            piece = text[start:]
            self._parts.append(piece)
            self._held += len(piece)
            if self._held > MAX_PENDING_CHARS:
                raise ValidationError("JSON document too large")


def _parse(source: str) -> Document:
    try:
        value = json.loads(source)
    except ValueError as e:
        raise ValidationError(f"malformed JSON document: {e}")
    if not isinstance(value, dict):
        raise ValidationError(f"expected a JSON object, got {type(value).__name__}")
    return value


async def decode_documents(chunks: AsyncIterable[bytes]) -> AsyncIterator[Document]:
    """
    Decode a stream of JSON objects arriving in arbitrary byte chunks.

    Objects may be newline-delimited or simply concatenated.

    Raises:
        ValidationError: on invalid UTF-8, malformed or truncated JSON, or a
            top-level value that is not an object.
    """
    text = codecs.getincrementaldecoder("utf-8")()
    splitter = DocumentSplitter()

    async def decoded() -> AsyncIterator[str]:
        try:
            async for chunk in chunks:
                yield text.decode(chunk)
            yield text.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise ValidationError(f"request body is not valid UTF-8: {e}")

    async for piece in decoded():
        for source in splitter.feed(piece):
            yield _parse(source)

    if splitter.pending:
        raise ValidationError("truncated JSON document at end of input")


@dataclass
class BulkResult:
    """Outcome of one bulk ingestion."""

    written: int = 0
    errors: List[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> Optional[Exception]:
        return self.errors[0] if self.errors else None


async def bulk_write(
    engine: "Engine",
    collection: Collection,
    chunks: AsyncIterable[bytes],
    workers: int = DEFAULT_WORKERS,
    queue_size: int = DEFAULT_QUEUE_SIZE,
) -> BulkResult:
    """
    Ingest every document in `chunks` into `collection`.

    Args:
        engine: Active backend engine
        collection: Target collection descriptor
        chunks: Request body as an async iterator of byte chunks
        workers: Number of concurrent writers
        queue_size: Capacity of the decoder-to-worker handoff queue

    Returns:
        BulkResult with the number of documents written and every recorded
        error. At most one error per producer/worker is recorded.
    """
    if workers < 1:
        raise ValueError("workers must be at least 1")

    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
    result = BulkResult()

    async def produce() -> None:
        try:
            async for doc in decode_documents(chunks):
                await queue.put(doc)
        except ValidationError as e:
            logger.warning("bulk_decode_failed", collection=collection.name, error=str(e))
            result.errors.append(e)
        except Exception as e:
            logger.error("bulk_read_failed", collection=collection.name, error=str(e))
            result.errors.append(e)
        for _ in range(workers):
            await queue.put(_DONE)

    async def consume() -> None:
        while True:
            doc = await queue.get()
            if doc is _DONE:
                return
            try:
                await engine.write(collection, extract_id(doc), doc)
            except Exception as e:
                logger.warning("bulk_write_failed", collection=collection.name, error=str(e))
                DOCUMENTS_WRITTEN.labels(collection=collection.name, outcome="error").inc()
                result.errors.append(e)
                return
            DOCUMENTS_WRITTEN.labels(collection=collection.name, outcome="ok").inc()
            result.written += 1

    producer = asyncio.create_task(produce(), name=f"bulk-producer-{collection.name}")
    consumers = [
        asyncio.create_task(consume(), name=f"bulk-worker-{collection.name}-{i}")
        for i in range(workers)
    ]
    try:
        await asyncio.gather(*consumers)
    finally:
        # Every worker has exited; a producer still blocked on the queue has no reader left
        for task in consumers:
            task.cancel()
        if not producer.done():
            producer.cancel()
        await asyncio.gather(producer, *consumers, return_exceptions=True)

    logger.info(
        "bulk_write_finished",
        collection=collection.name,
        written=result.written,
        errors=len(result.errors),
    )
    return result
