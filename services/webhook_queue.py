"""
Webhook Work Queue - bounded in-process queue for deferred webhook processing

Handlers acknowledge the carrier first and submit the heavy work here.
Workers run each (blocking) job in a thread via asyncio.to_thread. Shutdown
stops intake, drains within a timeout, then cancels the workers.

Accepted-but-unprocessed jobs live only in memory; the carrier's retry of
unacknowledged deliveries is the recovery path.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

Job = Callable[[], Any]


class QueueFullError(Exception):
    """The queue cannot take more work (full or not running)"""


class WebhookWorkQueue:
    """Fixed pool of workers over a bounded asyncio.Queue"""

    def __init__(self, max_size: int = 1000, workers: int = 2, drain_timeout: float = 10.0):
        self._max_size = max_size
        self._worker_count = max(1, workers)
        self._drain_timeout = drain_timeout
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._accepting = False
        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        if self._accepting:
            return
        self._queue = asyncio.Queue(maxsize=self._max_size)
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"webhook-worker-{index}")
            for index in range(self._worker_count)
        ]
        self._accepting = True
        logger.info(f"🚀 WEBHOOK_QUEUE_STARTED: workers={self._worker_count} max_size={self._max_size}")

    def submit(self, job: Job, label: str = "job") -> None:
        """Enqueue without waiting; raises QueueFullError when the job cannot be taken"""
        if not self._accepting or self._queue is None:
            raise QueueFullError("Webhook queue is not running")
        try:
            self._queue.put_nowait((label, job))
        except asyncio.QueueFull:
            logger.error(f"❌ WEBHOOK_QUEUE_FULL: rejected {label} (size={self._max_size})")
            raise QueueFullError("Webhook queue is full")
        logger.debug(f"WEBHOOK_QUEUE_SUBMITTED: {label} pending={self.pending}")

    async def stop(self) -> None:
        if not self._workers:
            return
        self._accepting = False
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
            logger.info(f"✅ WEBHOOK_QUEUE_DRAINED: processed={self.processed} failed={self.failed}")
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ WEBHOOK_QUEUE_DRAIN_TIMEOUT: {self.pending} job(s) abandoned")

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("🛑 WEBHOOK_QUEUE_STOPPED")

    async def _worker(self, index: int) -> None:
        while True:
            label, job = await self._queue.get()
            try:
                await asyncio.to_thread(job)
                self.processed += 1
            except Exception as e:
                self.failed += 1
                logger.error(f"❌ WEBHOOK_JOB_FAILED: worker={index} job={label}: {e}", exc_info=True)
            finally:
                self._queue.task_done()
