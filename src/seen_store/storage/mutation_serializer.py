"""Single-worker FIFO queue for store mutations.

Every mutating store operation is submitted here and executed by one worker
task, strictly one at a time in submission order. A failing operation only
fails its own caller; the worker continues with the next one. Once an
operation has been dequeued it runs to completion even if its caller stops
waiting.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_QueueItem = Tuple[Callable[[], Awaitable[Any]], "asyncio.Future[Any]", str]


def _consume_outcome(future: "asyncio.Future[Any]") -> None:
    # Retrieve the outcome of abandoned futures so asyncio does not report it
    if not future.cancelled():
        future.exception()


class MutationSerializer:
    """Runs submitted coroutine factories one at a time, first in first out.

    The queue and worker are created lazily inside the running event loop,
    and recreated if the serializer is later used from a different loop.
    """

    def __init__(self) -> None:
        self._queue: Optional["asyncio.Queue[Optional[_QueueItem]]"] = None
        self._worker: Optional["asyncio.Task[None]"] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of operations waiting to be executed."""
        return self._queue.qsize() if self._queue is not None else 0

    async def submit(
        self, operation: Callable[[], Awaitable[T]], name: str = "mutation"
    ) -> T:
        """Queue operation and wait for its result.

        Args:
            operation: Zero-argument callable returning the coroutine to run
            name: Label used in log messages

        Returns:
            Whatever the operation returns

        Raises:
            RuntimeError: If the serializer has been closed
            Exception: Whatever the operation raises
        """
        if self._closed:
            raise RuntimeError("Mutation serializer is closed")

        queue = self._ensure_worker()
        future: "asyncio.Future[T]" = asyncio.get_running_loop().create_future()
        queue.put_nowait((operation, future, name))

        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            future.add_done_callback(_consume_outcome)
            raise

    async def close(self) -> None:
        """Finish queued operations, then stop the worker."""
        self._closed = True
        if self._queue is None or self._worker is None or self._worker.done():
            return
        if self._loop is not asyncio.get_running_loop():
            return

        self._queue.put_nowait(None)
        await self._worker
        logger.debug("Mutation serializer stopped")

    def _ensure_worker(self) -> "asyncio.Queue[Optional[_QueueItem]]":
        loop = asyncio.get_running_loop()
        if (
            self._queue is None
            or self._worker is None
            or self._worker.done()
            or self._loop is not loop
        ):
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._run(self._queue))
            logger.debug("Mutation serializer worker started")
        return self._queue

    async def _run(self, queue: "asyncio.Queue[Optional[_QueueItem]]") -> None:
        while True:
            item = await queue.get()
            if item is None:
                queue.task_done()
                return

            operation, future, name = item
            try:
                result = await operation()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                logger.debug(f"Queued {name} failed: {e}")
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                queue.task_done()
