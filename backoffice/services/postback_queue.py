from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional, Tuple

from backoffice.core.config import settings
from backoffice.core.logging import get_structlog_logger
from backoffice.services.postback_dispatcher import PostbackDispatcher

logger = get_structlog_logger(__name__)


@dataclass(frozen=True)
class PostbackJob:
    key: str
    user_id: int
    lead_id: Optional[int] = None
    target_status: Optional[str] = None
    previous_status: Optional[str] = None
    test_url: Optional[str] = None
    version: Optional[int] = None

    @classmethod
    def for_transition(
        cls,
        user_id: int,
        lead_id: int,
        target_status: str,
        previous_status: Optional[str] = None,
        version: Optional[int] = None,
    ) -> "PostbackJob":
        return cls(
            key=f"lead:{lead_id}",
            user_id=user_id,
            lead_id=lead_id,
            target_status=target_status,
            previous_status=previous_status,
            version=version,
        )

    @classmethod
    def for_test(cls, user_id: int, url: str) -> "PostbackJob":
        return cls(key=f"test:{user_id}", user_id=user_id, test_url=url)


def _consume_outcome(future: asyncio.Future) -> None:
    # Nobody awaits transition jobs; mark their exceptions as retrieved
    if not future.cancelled():
        future.exception()


def _insert_in_order(
    items: Deque[Tuple[PostbackJob, asyncio.Future]],
    job: PostbackJob,
    future: asyncio.Future,
) -> None:
    """Append ``job``, ahead of any pending job of the same key with a later lead version."""
    if job.version is not None:
        for index, (queued, _) in enumerate(items):
            if queued.version is not None and queued.version > job.version:
                items.insert(index, (job, future))
                return
    items.append((job, future))


class PostbackQueue:
    """Per-key FIFO of postback jobs.

    Each key gets one worker task while it has pending jobs, so the sends for
    one lead go out in the order its status changed. Jobs carrying a lead
    version are kept sorted by it among the pending ones. Different keys run
    concurrently.
    """

    def __init__(self, dispatcher: PostbackDispatcher, shutdown_timeout: Optional[float] = None):
        self.dispatcher = dispatcher
        self.shutdown_timeout = (
            settings.postback_shutdown_timeout_seconds if shutdown_timeout is None else shutdown_timeout
        )
        self._pending: Dict[str, Deque[Tuple[PostbackJob, asyncio.Future]]] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        logger.info("postback_queue.started")

    def enqueue(self, job: PostbackJob) -> asyncio.Future:
        """Schedule ``job``; the returned future resolves with its result."""
        if not self._running:
            raise RuntimeError("postback queue is not running")

        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_outcome)
        _insert_in_order(self._pending.setdefault(job.key, deque()), job, future)

        if job.key not in self._workers:
            self._workers[job.key] = asyncio.create_task(self._drain(job.key), name=f"postback:{job.key}")

        logger.debug("postback_queue.enqueued", key=job.key, depth=len(self._pending[job.key]))
        return future

    def enqueue_transition(
        self,
        user_id: int,
        lead_id: int,
        target_status: str,
        previous_status: Optional[str] = None,
        version: Optional[int] = None,
    ) -> asyncio.Future:
        return self.enqueue(
            PostbackJob.for_transition(user_id, lead_id, target_status, previous_status, version=version)
        )

    async def _run(self, job: PostbackJob) -> Any:
        if job.test_url is not None:
            return await self.dispatcher.send_test(job.user_id, job.test_url)
        return await self.dispatcher.dispatch(
            job.user_id,
            job.lead_id,
            job.target_status,
            previous_status=job.previous_status,
        )

    async def _drain(self, key: str) -> None:
        items = self._pending[key]
        try:
            while items:
                job, future = items.popleft()
                try:
                    result = await self._run(job)
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as exc:
                    logger.exception(
                        "postback_queue.job_failed",
                        key=key,
                        lead_id=job.lead_id,
                        status=job.target_status,
                    )
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)
        finally:
            while items:
                _, future = items.popleft()
                future.cancel()
            self._pending.pop(key, None)
            self._workers.pop(key, None)

    def depth(self) -> int:
        return sum(len(items) for items in self._pending.values())

    async def join(self) -> None:
        """Wait until every queued job has run."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def stop(self) -> None:
        self._running = False
        workers = list(self._workers.values())
        if not workers:
            logger.info("postback_queue.stopped", cancelled=0)
            return

        done, pending = await asyncio.wait(workers, timeout=self.shutdown_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("postback_queue.stopped", completed=len(done), cancelled=len(pending))
