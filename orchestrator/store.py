"""Job and order stores with progress-transition checks and retried writes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import tempfile
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import StoreSettings
from core import GenerationAttempt, Job, JobContent, JobRecord, Order, OrderStatus, Progress
from utils.exceptions import (
    InvalidProgressTransition,
    JobNotFoundError,
    StoreError,
    StoreUnavailableError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(ABC):
    """
    Order/text store.

    Subclasses provide raw load/save; transition rules live here. Reads return
    deep copies, so callers never mutate stored state in place.
    """

    def __init__(self) -> None:
        self._lock = RLock()

    @abstractmethod
    def _load_job(self, job_id: str) -> Optional[JobRecord]:
        pass

    @abstractmethod
    def _save_job(self, record: JobRecord) -> None:
        pass

    @abstractmethod
    def _job_ids(self) -> List[str]:
        pass

    @abstractmethod
    def _load_order(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    def _save_order(self, order: Order) -> None:
        pass

    @abstractmethod
    def _order_ids(self) -> List[str]:
        pass

    def _require(self, job_id: str) -> JobRecord:
        record = self._load_job(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def _mutate(self, job_id: str, change: Callable[[JobRecord], None]) -> JobRecord:
        with self._lock:
            record = self._require(job_id)
            change(record)
            record.updated_at = _utcnow()
            self._save_job(record)
            return record.model_copy(deep=True)

    # Orders

    def create_order(self, order: Order) -> Order:
        """Persist an order and one record per job. Existing jobs are left untouched."""
        with self._lock:
            for job in order.jobs:
                if self._load_job(job.job_id) is None:
                    self._save_job(JobRecord(job=job.model_copy(update={"order_id": order.order_id})))
            self._save_order(order)
            return order.model_copy(deep=True)

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._lock:
            order = self._load_order(order_id)
            return order.model_copy(deep=True) if order else None

    def list_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        with self._lock:
            orders = [self._load_order(order_id) for order_id in self._order_ids()]
            return [
                order.model_copy(deep=True)
                for order in orders
                if order is not None and (status is None or order.status is status)
            ]

    def set_order_status(self, order_id: str, status: OrderStatus) -> Order:
        with self._lock:
            order = self._load_order(order_id)
            if order is None:
                raise StoreError(f"Order not found: {order_id}", {"order_id": order_id})
            order.status = status
            self._save_order(order)
            return order.model_copy(deep=True)

    # Jobs

    def get(self, job_id: str) -> JobRecord:
        with self._lock:
            return self._require(job_id).model_copy(deep=True)

    def get_job(self, job_id: str) -> Job:
        return self.get(job_id).job

    def list_jobs(self, order_id: Optional[str] = None) -> List[JobRecord]:
        with self._lock:
            records = [self._load_job(job_id) for job_id in self._job_ids()]
            return [
                record.model_copy(deep=True)
                for record in records
                if record is not None and (order_id is None or record.job.order_id == order_id)
            ]

    def mark_started(self, job_id: str) -> JobRecord:
        def change(record: JobRecord) -> None:
            record.started_at = record.started_at or _utcnow()

        return self._mutate(job_id, change)

    def set_progress(self, job_id: str, progress: Progress) -> JobRecord:
        def change(record: JobRecord) -> None:
            if not Progress.can_advance(record.progress, progress):
                raise InvalidProgressTransition(
                    f"Cannot move progress from {record.progress} to {progress.value}",
                    {"job_id": job_id},
                )
            record.progress = progress

        return self._mutate(job_id, change)

    def update_content(self, job_id: str, content: JobContent) -> JobRecord:
        def change(record: JobRecord) -> None:
            record.content = content.model_copy(deep=True)

        return self._mutate(job_id, change)

    def append_attempt(self, job_id: str, attempt: GenerationAttempt) -> JobRecord:
        def change(record: JobRecord) -> None:
            record.attempts.append(attempt.model_copy(deep=True))

        return self._mutate(job_id, change)

    def mark_completed(self, job_id: str, content: JobContent) -> JobRecord:
        def change(record: JobRecord) -> None:
            if not Progress.can_advance(record.progress, Progress.COMPLETED):
                raise InvalidProgressTransition(
                    f"Cannot complete job in state {record.progress}", {"job_id": job_id}
                )
            now = _utcnow()
            record.content = content.model_copy(deep=True)
            record.progress = Progress.COMPLETED
            record.completed_at = now

        return self._mutate(job_id, change)

    def mark_failed(self, job_id: str, stage: str, error: str) -> JobRecord:
        """Freeze the job in ``error``; content already written is kept."""

        def change(record: JobRecord) -> None:
            if not Progress.can_advance(record.progress, Progress.ERROR):
                raise InvalidProgressTransition(
                    f"Cannot fail job in state {record.progress}", {"job_id": job_id}
                )
            record.progress = Progress.ERROR
            record.failed_stage = stage
            record.error = str(error)

        return self._mutate(job_id, change)

    def reset_for_retry(self, job_id: str) -> JobRecord:
        """Manual retry: clear the terminal state; the audit trail is kept."""

        def change(record: JobRecord) -> None:
            if record.progress is not Progress.ERROR:
                raise InvalidProgressTransition(
                    f"Only failed jobs can be retried (state {record.progress})", {"job_id": job_id}
                )
            record.progress = None
            record.failed_stage = None
            record.error = None
            record.completed_at = None

        return self._mutate(job_id, change)


class InMemoryJobStore(JobStore):
    """Thread-safe in-process store."""

    def __init__(self) -> None:
        super().__init__()
        self._jobs: Dict[str, JobRecord] = {}
        self._orders: Dict[str, Order] = {}

    def _load_job(self, job_id: str) -> Optional[JobRecord]:
        record = self._jobs.get(job_id)
        return record.model_copy(deep=True) if record else None

    def _save_job(self, record: JobRecord) -> None:
        self._jobs[record.job_id] = record.model_copy(deep=True)

    def _job_ids(self) -> List[str]:
        return list(self._jobs.keys())

    def _load_order(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    def _save_order(self, order: Order) -> None:
        self._orders[order.order_id] = order.model_copy(deep=True)

    def _order_ids(self) -> List[str]:
        return list(self._orders.keys())


class JsonFileJobStore(JobStore):
    """
    One JSON document per job and per order.

    Files are written to a temporary sibling and moved into place, so a reader
    never sees a half-written record. Records are validated on load.
    """

    def __init__(self, root: str | Path) -> None:
        super().__init__()
        self.root = Path(root)
        self._jobs_dir = self.root / "jobs"
        self._orders_dir = self.root / "orders"

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            raise StoreError(f"Corrupt record {path.name}: {exc}", {"path": str(path)}) from exc
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot read {path}: {exc}", {"path": str(path)}) from exc

    def _write(self, path: Path, payload: Dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, ensure_ascii=False, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StoreUnavailableError(f"Cannot write {path}: {exc}", {"path": str(path)}) from exc

    def _load_job(self, job_id: str) -> Optional[JobRecord]:
        payload = self._read(self._jobs_dir / f"{job_id}.json")
        if payload is None:
            return None
        try:
            return JobRecord.model_validate(payload)
        except ValidationError as exc:
            raise StoreError(f"Invalid job record {job_id}: {exc}", {"job_id": job_id}) from exc

    def _save_job(self, record: JobRecord) -> None:
        self._write(self._jobs_dir / f"{record.job_id}.json", record.model_dump(mode="json"))

    def _job_ids(self) -> List[str]:
        if not self._jobs_dir.exists():
            return []
        return sorted(path.stem for path in self._jobs_dir.glob("*.json"))

    def _load_order(self, order_id: str) -> Optional[Order]:
        payload = self._read(self._orders_dir / f"{order_id}.json")
        if payload is None:
            return None
        try:
            return Order.model_validate(payload)
        except ValidationError as exc:
            raise StoreError(f"Invalid order record {order_id}: {exc}", {"order_id": order_id}) from exc

    def _save_order(self, order: Order) -> None:
        self._write(self._orders_dir / f"{order.order_id}.json", order.model_dump(mode="json"))

    def _order_ids(self) -> List[str]:
        if not self._orders_dir.exists():
            return []
        return sorted(path.stem for path in self._orders_dir.glob("*.json"))


async def write_with_retry(
    write: Callable[..., T],
    *args: Any,
    attempts: int = 3,
    wait: float = 0.5,
    **kwargs: Any,
) -> T:
    """Run one store write, retrying only while the store reports itself unavailable."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=wait, min=0, max=max(wait * 8, 0)),
        retry=retry_if_exception_type(StoreUnavailableError),
        reraise=True,
    ):
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(
                    "store_write_retry op=%s attempt=%s",
                    getattr(write, "__name__", "write"),
                    attempt.retry_state.attempt_number,
                )
            return write(*args, **kwargs)
    raise StoreUnavailableError("Store write was not attempted")


def create_job_store(settings: Optional[StoreSettings] = None) -> JobStore:
    from config import get_store_settings

    settings = settings or get_store_settings()
    backend = (settings.backend or "file").strip().lower()
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "file":
        return JsonFileJobStore(settings.path)
    raise StoreError(f"Unknown store backend: {settings.backend}", {"backend": settings.backend})
