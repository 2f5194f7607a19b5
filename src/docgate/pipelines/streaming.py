"""
Streaming query pipeline.

Backend query results are handed to the consumer one at a time, without
materializing the result set. Production is driven by the consumer: the
next match is only pulled (and hydrated) when the consumer asks for the
next document, so nothing is produced ahead of demand.

The consumer can abandon a stream at any point by firing the StopSignal
it passed in; the producer checks the signal before every step and ends
the stream instead of starting another backend call.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

from docgate.platform.logging import get_logger
from docgate.storage.errors import BackendError, GatewayError

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Hydrator = Callable[[T], Awaitable[Optional[R]]]


class StopSignal:
    """One-shot, idempotent stop broadcast shared by a producer and its consumer."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def stop(self) -> None:
        self._event.set()

    @property
    def stopped(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def _aclose(source) -> None:
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()


async def stream_results(
    source: AsyncIterator[T],
    stop: StopSignal,
    hydrate: Optional[Hydrator] = None,
) -> AsyncIterator[Union[T, R]]:
    """
    Expose a backend result source as a cancelable lazy sequence.

    Args:
        source: Async iterator over raw backend matches (documents or ids)
        stop: Signal checked before every production step
        hydrate: Optional per-match fetch; a None result means the match
            disappeared and is skipped

    Raises:
        BackendError: when the source or the hydrator fails. Gateway errors
            raised by the backend adapter pass through unchanged.
    """
    try:
        while not stop.stopped:
            try:
                match = await source.__anext__()
            except StopAsyncIteration:
                return
            except GatewayError:
                raise
            except Exception as e:
                logger.error("stream_source_failed", error=str(e))
                raise BackendError(f"reading query results failed: {e}") from e

            if hydrate is None:
                item = match
            else:
                if stop.stopped:
                    return
                try:
                    item = await hydrate(match)
                except GatewayError:
                    raise
                except Exception as e:
                    logger.error("stream_hydration_failed", error=str(e))
                    raise BackendError(f"hydrating query result failed: {e}") from e
                if item is None:
                    continue

            if stop.stopped:
                return
            yield item
    finally:
        await _aclose(source)


async def from_iterable(items) -> AsyncIterator:
    """Adapt an already-fetched sequence (e.g. a list of hit ids) to a stream source."""
    for item in items:
        yield item
