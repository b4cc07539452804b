from __future__ import annotations

import json
import logging
import sys

import pytest

import main as cli
from generation.pipeline import JobPipeline
from orchestrator import InMemoryJobStore, LogNotifier, OrderOrchestrator
from utils.logger import get_logger, setup_package_logging

from tests.fakes import FakeLLM, FakeScrapeClient, FakeSearchClient, make_settings


@pytest.fixture
def orchestrator(monkeypatch, tmp_path):
    store = InMemoryJobStore()
    pipeline = JobPipeline(store, FakeLLM(), FakeSearchClient(), FakeScrapeClient(), make_settings())
    instance = OrderOrchestrator(store=store, pipeline=pipeline, notifier=LogNotifier(tmp_path), write_retry_wait=0)
    monkeypatch.setattr(cli, "get_default_orchestrator", lambda: instance)
    return instance


def _run(monkeypatch, capsys, *argv: str):
    monkeypatch.setattr(sys, "argv", ["main.py", "--log-level", "WARNING", *argv])
    cli.main()
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def test_submit_run_and_status(monkeypatch, capsys, orchestrator) -> None:
    submitted = _run(
        monkeypatch,
        capsys,
        "submit",
        "--topic",
        "Cold brew coffee",
        "--length",
        "2000",
        "--keywords",
        "cold brew, coffee",
        "--links-json",
        '[{"url": "https://cafe.example/cold-brew", "anchor": "cold brew kits"}]',
        "--order-number",
        "CB-1",
    )
    job_id = submitted["job_ids"][0]
    stored = orchestrator.store.get_job(job_id)
    assert stored.seo_keywords == ["cold brew", "coffee"]
    assert stored.seo_links[0].anchor == "cold brew kits"
    assert stored.order_id == submitted["order_id"]

    processed = _run(monkeypatch, capsys, "worker-run-next")
    assert processed["processed"] is True
    assert processed["status"] == "completed"

    status = _run(monkeypatch, capsys, "status", "--job-id", job_id)
    assert status["progress"] == "completed"
    assert status["generated_chars"] > 0

    idle = _run(monkeypatch, capsys, "worker-run-next")
    assert idle == {"processed": False}


def test_status_of_unknown_job_reports_error(monkeypatch, capsys, orchestrator) -> None:
    payload = _run(monkeypatch, capsys, "status", "--job-id", "missing")
    assert "Job not found" in payload["error"]


def test_retry_of_unfailed_job_reports_error(monkeypatch, capsys, orchestrator, tmp_path) -> None:
    order_file = tmp_path / "order.json"
    order_file.write_text(
        json.dumps(
            {
                "order_id": "order_f",
                "order_number": "F-1",
                "jobs": [{"job_id": "job_f", "topic": "French press", "length": 2500, "language": "fr"}],
            }
        ),
        encoding="utf-8",
    )
    _run(monkeypatch, capsys, "submit", "--order-file", str(order_file))

    payload = _run(monkeypatch, capsys, "retry", "--job-id", "job_f")

    assert payload["job_id"] == "job_f"
    assert "Only failed jobs can be retried" in payload["error"]


def test_package_logging_attaches_handlers_once() -> None:
    setup_package_logging(level=logging.DEBUG)
    setup_package_logging(level=logging.DEBUG)

    assert len(logging.getLogger("generation").handlers) == 1
    assert get_logger("generation") is logging.getLogger("generation")


@pytest.mark.parametrize(
    "extra",
    [
        ["--language", "xx"],
        ["--links-json", "[{not json"],
        ["--links-json", '[{"anchor": "no url"}]'],
    ],
)
def test_submit_rejects_invalid_order_input(monkeypatch, capsys, orchestrator, extra) -> None:
    monkeypatch.setattr(sys, "argv", ["main.py", "submit", "--topic", "Tea", *extra])

    with pytest.raises(SystemExit) as exc_info:
        cli.main()

    assert exc_info.value.code == 2
    assert "invalid order" in capsys.readouterr().err
    assert orchestrator.store.list_orders() == []


def test_worker_run_closes_clients(monkeypatch, capsys, orchestrator) -> None:
    closed = []

    async def record_close() -> None:
        closed.append(True)

    monkeypatch.setattr(orchestrator, "aclose", record_close)
    _run(monkeypatch, capsys, "submit", "--topic", "Green tea", "--length", "2000")

    _run(monkeypatch, capsys, "worker-run-next")

    assert closed == [True]
