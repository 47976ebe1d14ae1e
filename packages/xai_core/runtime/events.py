import asyncio
import inspect

from packages.contracts.payloads import LifecycleEvent
from packages.xai_core.protocols import EventSink


class EventDispatcher:
    """
    Fire-and-forget delivery of lifecycle events.
    `publish` never blocks: events go into a bounded queue drained by a
    background task. A full queue drops the event; a failing sink is logged.
    """

    def __init__(self, sink: EventSink | None, queue_size: int, logger):
        self.sink = sink
        self.queue_size = queue_size
        self.logger = logger
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None

    def publish(self, event: LifecycleEvent):
        if self.sink is None:
            return
        self._ensure_worker()
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.logger.warning(f"Event queue full. Dropping {event.type} for {event.explanation_id}.")

    def _ensure_worker(self):
        if self._worker is None or self._worker.done():
            if self._queue is None:
                self._queue = asyncio.Queue(maxsize=self.queue_size)
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self):
        while True:
            event = await self._queue.get()
            try:
                result = self.sink.emit(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.warning(f"Event sink failed on {event.type}: {e}")
            finally:
                self._queue.task_done()

    async def flush(self):
        """Waits until every queued event has been handed to the sink."""
        if self._queue is not None and self._worker is not None:
            await self._queue.join()

    async def aclose(self):
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
