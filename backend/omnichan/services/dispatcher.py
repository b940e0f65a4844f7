import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Bounded queue between the webhook endpoint and message sync.

    The endpoint submits events without waiting on them; a fixed pool of
    worker tasks drains the queue. A full queue drops the event (and says
    so in the log) instead of blocking the HTTP response. Handler errors are
    logged and counted, never re-raised.
    """

    def __init__(self, handler: Callable[[Any], Awaitable[Any]], maxsize: int = 1000, workers: int = 4):
        self.handler = handler
        self.maxsize = maxsize
        self.workers = workers
        self.queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self.queue = asyncio.Queue(maxsize=self.maxsize)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"webhook-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Started {self.workers} webhook workers (queue size {self.maxsize})")

    def submit(self, event: Any) -> bool:
        """Queue an event for processing; False if it was dropped"""
        if self.queue is None:
            self.dropped += 1
            logger.error(f"Dispatcher not started, dropping event {_describe(event)}")
            return False
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.error(f"Webhook queue full ({self.maxsize}), dropping event {_describe(event)}")
            return False
        return True

    async def join(self) -> None:
        if self.queue is not None:
            await self.queue.join()

    async def stop(self, drain: bool = True) -> None:
        if not self._tasks:
            return
        if drain:
            await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.queue = None
        logger.info(
            f"Webhook workers stopped (processed={self.processed}, failed={self.failed}, dropped={self.dropped})"
        )

    async def _worker(self, index: int) -> None:
        queue = self.queue
        while True:
            event = await queue.get()
            try:
                await self.handler(event)
                self.processed += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failed += 1
                logger.error(f"Worker {index} failed to process event {_describe(event)}", exc_info=True)
            finally:
                queue.task_done()


def _describe(event: Any) -> str:
    """Identifiers worth logging for replay"""
    parts = [getattr(event, "kind", type(event).__name__)]
    for attr in ("page_id", "sender_external_id", "platform_message_id", "watermark_millis"):
        value = getattr(event, attr, None)
        if value is not None:
            parts.append(f"{attr}={value}")
    return " ".join(parts)
