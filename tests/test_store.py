from __future__ import annotations

import pytest

from config import StoreSettings
from core import GenerationAttempt, Job, JobContent, Order, OrderStatus, Progress
from orchestrator.store import (
    InMemoryJobStore,
    JsonFileJobStore,
    create_job_store,
    write_with_retry,
)
from utils.exceptions import (
    InvalidProgressTransition,
    JobNotFoundError,
    StoreError,
    StoreUnavailableError,
)


def _order(order_id: str = "order_1", *job_ids: str) -> Order:
    jobs = [
        Job(job_id=job_id, topic=f"Topic {job_id}", length=2_000)
        for job_id in (job_ids or ("job_1",))
    ]
    return Order(order_id=order_id, order_number="A-1", user_email="ops@example.com", jobs=jobs)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryJobStore()
    return JsonFileJobStore(tmp_path / "store")


def test_create_order_stamps_order_id_on_jobs(store) -> None:
    store.create_order(_order("order_1", "job_1", "job_2"))

    records = store.list_jobs(order_id="order_1")

    assert sorted(r.job_id for r in records) == ["job_1", "job_2"]
    assert all(r.job.order_id == "order_1" for r in records)
    assert all(r.progress is None for r in records)


def test_progress_moves_forward_only(store) -> None:
    store.create_order(_order())
    store.set_progress("job_1", Progress.QUERY)
    store.set_progress("job_1", Progress.SELECTING)

    with pytest.raises(InvalidProgressTransition):
        store.set_progress("job_1", Progress.SEARCH)

    store.set_progress("job_1", Progress.WRITING)
    record = store.mark_completed("job_1", JobContent(generated_content="<p>Done.</p>"))
    assert record.progress is Progress.COMPLETED
    assert record.completed_at is not None

    with pytest.raises(InvalidProgressTransition):
        store.mark_failed("job_1", "validation", "late failure")


def test_failure_keeps_content_and_retry_resets(store) -> None:
    store.create_order(_order())
    store.update_content("job_1", JobContent(search_query="climbing shoes"))
    store.append_attempt(
        "job_1", GenerationAttempt(job_id="job_1", stage="query", prompt="p", output="o")
    )

    failed = store.mark_failed("job_1", "planning", "LLMError: boom")
    assert failed.progress is Progress.ERROR
    assert failed.failed_stage == "planning"
    assert failed.content.search_query == "climbing shoes"

    reset = store.reset_for_retry("job_1")
    assert reset.progress is None
    assert reset.failed_stage is None
    assert reset.error is None
    assert len(reset.attempts) == 1

    with pytest.raises(InvalidProgressTransition):
        store.reset_for_retry("job_1")


def test_reads_are_copies(store) -> None:
    store.create_order(_order())

    record = store.get("job_1")
    record.content.generated_content = "mutated"

    assert store.get("job_1").content.generated_content == ""


def test_unknown_job_raises(store) -> None:
    with pytest.raises(JobNotFoundError):
        store.get("missing")


def test_list_orders_filters_by_status(store) -> None:
    store.create_order(_order("order_a", "job_a"))
    store.create_order(_order("order_b", "job_b"))
    store.set_order_status("order_b", OrderStatus.COMPLETED)

    assert [o.order_id for o in store.list_orders(OrderStatus.PENDING)] == ["order_a"]
    assert {o.order_id for o in store.list_orders()} == {"order_a", "order_b"}
    with pytest.raises(StoreError):
        store.set_order_status("order_x", OrderStatus.COMPLETED)


def test_file_store_survives_reopen(tmp_path) -> None:
    first = JsonFileJobStore(tmp_path)
    first.create_order(_order())
    first.set_progress("job_1", Progress.QUERY)

    second = JsonFileJobStore(tmp_path)

    assert second.get("job_1").progress is Progress.QUERY
    assert second.get_order("order_1").order_number == "A-1"


def test_corrupt_file_raises_store_error(tmp_path) -> None:
    store = JsonFileJobStore(tmp_path)
    store.create_order(_order())
    (tmp_path / "jobs" / "job_1.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(StoreError):
        store.get("job_1")


def test_create_job_store_backends(tmp_path) -> None:
    assert isinstance(create_job_store(StoreSettings(backend="memory")), InMemoryJobStore)
    assert isinstance(create_job_store(StoreSettings(backend="file", path=str(tmp_path))), JsonFileJobStore)
    with pytest.raises(StoreError):
        create_job_store(StoreSettings(backend="redis"))


@pytest.mark.asyncio
async def test_write_with_retry_retries_only_unavailable() -> None:
    calls = []

    def flaky(value):
        calls.append(value)
        if len(calls) < 3:
            raise StoreUnavailableError("busy")
        return value * 2

    assert await write_with_retry(flaky, 21, attempts=3, wait=0) == 42
    assert len(calls) == 3

    def broken():
        calls.append("broken")
        raise StoreError("bad record")

    calls.clear()
    with pytest.raises(StoreError):
        await write_with_retry(broken, attempts=3, wait=0)
    assert calls == ["broken"]
