"""Order service: submit orders, run their jobs in sequence, report status, retry."""

from __future__ import annotations

import logging
from threading import Lock
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from config import Settings, get_settings
from core import JobRecord, Order, OrderStatus
from utils.exceptions import LongformError, StoreError
from .notification import BaseNotifier, LogNotifier, OrderNotification, create_notifier
from .queue import OrderQueue
from .store import JobStore, create_job_store, write_with_retry

if TYPE_CHECKING:
    from generation.pipeline import JobPipeline


logger = logging.getLogger(__name__)


class OrderOrchestrator:
    """
    Central service for the order lifecycle.

    Jobs of one order run one after another. A failed job does not stop the
    order; the order is marked completed once every job has reached a
    terminal state, and the notifier is called afterwards.
    """

    def __init__(
        self,
        *,
        store: JobStore,
        pipeline: "JobPipeline",
        queue: Optional[OrderQueue] = None,
        notifier: Optional[BaseNotifier] = None,
        write_retries: int = 3,
        write_retry_wait: float = 0.5,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._queue = queue or OrderQueue()
        self._notifier = notifier or LogNotifier()
        self._write_retries = write_retries
        self._write_retry_wait = write_retry_wait

    @property
    def store(self) -> JobStore:
        return self._store

    async def _write(self, operation, *args: Any):
        return await write_with_retry(
            operation,
            *args,
            attempts=self._write_retries,
            wait=self._write_retry_wait,
        )

    def submit_order(self, order: Order) -> Order:
        """Persist the order and its jobs, then queue it once."""
        stored = self._store.create_order(order)
        self._queue.enqueue(stored.order_id)
        logger.info("order_submitted order_id=%s jobs=%s", stored.order_id, len(stored.jobs))
        return stored

    def next_order_id(self) -> Optional[str]:
        """Queued order first; otherwise the oldest pending order in the store."""
        order_id = self._queue.dequeue()
        if order_id:
            return order_id
        pending = self._store.list_orders(OrderStatus.PENDING)
        return pending[0].order_id if pending else None

    async def process_next(self) -> Optional[Order]:
        order_id = self.next_order_id()
        if not order_id:
            return None
        return await self.process_order(order_id)

    async def process_order(self, order_id: str) -> Order:
        order = self._store.get_order(order_id)
        if order is None:
            raise StoreError(f"Order not found: {order_id}", {"order_id": order_id})

        await self._write(self._store.set_order_status, order_id, OrderStatus.IN_PROGRESS)
        logger.info("order_started order_id=%s jobs=%s", order_id, len(order.jobs))
        for job in order.jobs:
            try:
                record = await self._pipeline.run(job.job_id)
                logger.info(
                    "order_job_done order_id=%s job_id=%s progress=%s",
                    order_id,
                    job.job_id,
                    record.progress.value if record.progress else None,
                )
            except LongformError as exc:
                logger.error("order_job_failed order_id=%s job_id=%s error=%s", order_id, job.job_id, exc)

        order = await self._write(self._store.set_order_status, order_id, OrderStatus.COMPLETED)
        await self._notify(order)
        return order

    async def _notify(self, order: Order) -> None:
        notification = OrderNotification.from_records(order, self._store.list_jobs(order.order_id))
        try:
            await self._notifier.send(notification)
        except Exception as exc:
            logger.warning("order_notification_failed order_id=%s error=%s", order.order_id, exc)

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """Coarse status for external pollers."""
        record = self._store.get(job_id)
        return {
            "job_id": record.job_id,
            "order_id": record.job.order_id,
            "progress": record.progress.value if record.progress else None,
            "failed_stage": record.failed_stage,
            "error": record.error,
            "generated_at": record.content.generated_at.isoformat() if record.content.generated_at else None,
            "generated_chars": len(record.content.generated_content),
            "attempts": len(record.attempts),
        }

    def get_order_status(self, order_id: str) -> Optional[Dict[str, Any]]:
        order = self._store.get_order(order_id)
        if order is None:
            return None
        return {
            "order_id": order.order_id,
            "order_number": order.order_number,
            "status": order.status.value,
            "jobs": [self.get_job_status(job.job_id) for job in order.jobs],
        }

    async def aclose(self) -> None:
        await self._pipeline.aclose()

    async def retry_job(self, job_id: str) -> JobRecord:
        """Manual retry of a failed job from the first stage; its audit trail is kept."""
        await self._write(self._store.reset_for_retry, job_id)
        logger.info("job_retry job_id=%s", job_id)
        return await self._pipeline.run(job_id)


def build_orchestrator(settings: Optional[Settings] = None, store: Optional[JobStore] = None) -> OrderOrchestrator:
    """Wire the configured store, model, search and scrape clients into an orchestrator."""
    from generation.pipeline import JobPipeline
    from intelligence.llm import get_llm
    from scrapers import GoogleSearchClient, create_scrape_client

    settings = settings or get_settings()
    store = store or create_job_store(settings.store)
    pipeline = JobPipeline(
        store=store,
        llm=get_llm(),
        search_client=GoogleSearchClient(settings.search),
        scrape_client=create_scrape_client(settings.scraper),
        settings=settings,
    )
    return OrderOrchestrator(
        store=store,
        pipeline=pipeline,
        notifier=create_notifier(settings.notification),
        write_retries=settings.store.write_retries,
        write_retry_wait=settings.store.write_retry_wait,
    )


_DEFAULT_ORCHESTRATOR: Optional[OrderOrchestrator] = None
_DEFAULT_LOCK = Lock()


def get_default_orchestrator() -> OrderOrchestrator:
    global _DEFAULT_ORCHESTRATOR
    with _DEFAULT_LOCK:
        if _DEFAULT_ORCHESTRATOR is None:
            _DEFAULT_ORCHESTRATOR = build_orchestrator()
        return _DEFAULT_ORCHESTRATOR


def submit_order(order: Order) -> Order:
    return get_default_orchestrator().submit_order(order)


def get_job_status(job_id: str) -> Dict[str, Any]:
    return get_default_orchestrator().get_job_status(job_id)


async def retry_job(job_id: str) -> JobRecord:
    return await get_default_orchestrator().retry_job(job_id)


def list_orders(status: Optional[OrderStatus] = None) -> List[Order]:
    return get_default_orchestrator().store.list_orders(status)
