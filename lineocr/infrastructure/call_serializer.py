import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallSerializer:
    """FIFO single-flight queue: one consumer task runs scheduled units in order.

    A unit whose caller was cancelled before its turn is skipped. A unit that
    already started always runs to completion. Failures are handed back to
    their own caller only; the next unit starts regardless.
    """

    def __init__(self, name: str = "ocr"):
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    async def schedule(self, run: Callable[[], Awaitable[T]]) -> T:
        if self._closed:
            raise RuntimeError(f"CallSerializer {self.name} is closed")
        loop = asyncio.get_running_loop()
        self._ensure_worker(loop)
        future = loop.create_future()
        self._queue.put_nowait((run, future))
        logger.debug("call_queued serializer=%s pending=%s", self.name, self._queue.qsize())
        return await future

    async def close(self) -> None:
        self._closed = True
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                future.cancel()
        logger.info("call_serializer_closed serializer=%s", self.name)

    def _ensure_worker(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._loop is not loop:
            # Queues and tasks belong to one event loop.
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = None
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._consume(), name=f"call-serializer-{self.name}")

    async def _consume(self) -> None:
        queue = self._queue
        while True:
            run, future = await queue.get()
            try:
                if future.cancelled():
                    logger.info("call_skipped serializer=%s reason=cancelled", self.name)
                    continue
                await self._run_one(run, future)
            finally:
                queue.task_done()

    async def _run_one(self, run: Callable[[], Awaitable[Any]], future: asyncio.Future) -> None:
        try:
            result = await run()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as exc:
            logger.debug("call_failed serializer=%s error=%s", self.name, type(exc).__name__)
            if not future.done():
                future.set_exception(exc)
        else:
            if not future.done():
                future.set_result(result)
