from __future__ import annotations

from typing import List

import pytest

from config import GenerationSettings, ScraperSettings
from core import FetchStatus, Job, Progress, SourceCandidate, UserSources
from generation.audit import AuditTrail
from generation.sources import (
    SourceAcquisitionEngine,
    clean_query,
    compose_source_material,
    parse_selection,
)
from generation.prompts import DISCOVERED_SOURCES_BANNER, USER_SOURCES_BANNER
from utils.exceptions import LLMError, ScraperError, SearchError

from tests.fakes import FakeLLM, FakeScrapeClient, FakeSearchClient


def _job(**overrides) -> Job:
    data = {"job_id": "job_1", "topic": "Winter hiking boots", "length": 2000, "language": "en"}
    data.update(overrides)
    return Job(**data)


def _candidate(url: str, length: int, *, user: bool = False) -> SourceCandidate:
    return SourceCandidate(
        url=url,
        text="x" * length,
        length=length,
        original_length=length,
        status=FetchStatus.SUCCESS,
        is_user_source=user,
    )


def _engine(search=None, scrape=None, **scraper) -> SourceAcquisitionEngine:
    scraper.setdefault("inter_fetch_delay", 0)
    return SourceAcquisitionEngine(
        search or FakeSearchClient(),
        scrape or FakeScrapeClient(),
        ScraperSettings(**scraper),
        GenerationSettings(),
    )


def test_clean_query_strips_labels_quotes_and_caps_words() -> None:
    assert clean_query('Query: "best hiking boots for winter"\n', "fallback") == "best hiking boots for winter"
    assert clean_query("", "My topic") == "My topic"
    long_reply = "one two three four five six seven eight nine ten"
    assert clean_query(long_reply, "x") == "one two three four five six seven eight"


def test_parse_selection_dedupes_and_range_checks() -> None:
    assert parse_selection("1, 3,5, 3, 99, 2", count=10) == [1, 3, 5, 2]
    assert parse_selection("no numbers here", count=10) == []
    assert len(parse_selection("1,2,3,4,5,6,7,8,9", count=10, max_selected=8)) == 8


def test_compose_source_material_puts_user_sources_first() -> None:
    material = compose_source_material(
        [_candidate("https://d.example", 600), _candidate("https://u.example", 700, user=True)]
    )
    assert material.index(USER_SOURCES_BANNER) < material.index(DISCOVERED_SOURCES_BANNER)


@pytest.mark.asyncio
async def test_scrape_batch_applies_shared_budget() -> None:
    engine = _engine(scrape=FakeScrapeClient(default_length=4000), discovered_budget=5000)
    urls = ["https://a.example", "https://b.example", "https://c.example"]

    candidates = await engine.scrape_batch(urls, user=False)

    assert [c.length for c in candidates] == [1666, 1667, 1667]
    assert all(c.original_length == 4000 for c in candidates)
    assert sum(c.length for c in candidates) <= 5000


@pytest.mark.asyncio
async def test_scrape_batch_records_failures_without_raising() -> None:
    scrape = FakeScrapeClient(pages={"https://bad.example": ScraperError("403 Client Error for url")})
    engine = _engine(scrape=scrape)

    candidates = await engine.scrape_batch(["https://bad.example", "https://ok.example"], user=False)

    assert candidates[0].status is FetchStatus.FAILED
    assert "403" in candidates[0].error
    assert candidates[1].succeeded


def test_usability_filter() -> None:
    engine = _engine()
    assert engine.is_usable(_candidate("https://a.example", 800))
    assert not engine.is_usable(_candidate("https://a.example", 400))
    denied = SourceCandidate(
        url="https://d.example",
        text="Access Denied " * 100,
        length=1400,
        original_length=1400,
        status=FetchStatus.SUCCESS,
    )
    assert not engine.is_usable(denied)


@pytest.mark.asyncio
async def test_select_skips_model_for_few_candidates() -> None:
    llm = FakeLLM()
    engine = _engine()
    candidates = [_candidate(f"https://{i}.example", 1000) for i in range(3)]

    picked, rationale = await engine.select(_job(), candidates, AuditTrail(llm, "job_1"))

    assert picked == candidates
    assert llm.calls == []
    assert "all 3" in rationale


@pytest.mark.asyncio
async def test_select_tops_up_short_selection() -> None:
    llm = FakeLLM(selection="2, 4")
    engine = _engine()
    lengths = [3000, 1500, 5000, 800, 2000]
    candidates = [_candidate(f"https://c{i}.example", n) for i, n in enumerate(lengths, start=1)]

    picked, rationale = await engine.select(_job(), candidates, AuditTrail(llm, "job_1"))

    assert [c.url for c in picked] == ["https://c2.example", "https://c4.example", "https://c3.example"]
    assert "topped up" in rationale


@pytest.mark.asyncio
async def test_select_falls_back_to_longest_on_unusable_reply() -> None:
    llm = FakeLLM(selection="none of them look good")
    engine = _engine()
    lengths = [3000, 1500, 5000, 800, 2000]
    candidates = [_candidate(f"https://c{i}.example", n) for i, n in enumerate(lengths, start=1)]

    picked, rationale = await engine.select(_job(), candidates, AuditTrail(llm, "job_1"))

    assert [c.url for c in picked] == ["https://c3.example", "https://c1.example", "https://c5.example"]
    assert rationale.startswith("fallback")


@pytest.mark.asyncio
async def test_select_survives_model_error() -> None:
    llm = FakeLLM().script("source-selection", LLMError("overloaded", provider="fake"))
    engine = _engine()
    candidates = [_candidate(f"https://c{i}.example", 1000 + i) for i in range(5)]

    picked, _ = await engine.select(_job(), candidates, AuditTrail(llm, "job_1"))

    assert len(picked) == 3


@pytest.mark.asyncio
async def test_acquire_reports_progress_in_order() -> None:
    llm = FakeLLM()
    search = FakeSearchClient(count=15)
    scrape = FakeScrapeClient(default_length=3000)
    engine = _engine(search=search, scrape=scrape)
    seen: List[Progress] = []

    async def on_progress(progress: Progress) -> None:
        seen.append(progress)

    result = await engine.acquire(_job(), AuditTrail(llm, "job_1"), on_progress)

    assert seen == [Progress.QUERY, Progress.SEARCH, Progress.SCRAPING_ALL, Progress.SELECTING]
    assert result.query == "practical guide overview"
    assert len(search.calls) == 1
    assert search.calls[0]["language"] == "en"
    assert len(scrape.calls) == 15
    assert 3 <= len(result.selected) <= 8
    assert not result.no_sources


@pytest.mark.asyncio
async def test_user_sources_over_threshold_skip_discovery() -> None:
    llm = FakeLLM()
    search = FakeSearchClient()
    scrape = FakeScrapeClient(default_length=250_000)
    engine = _engine(search=search, scrape=scrape)
    job = _job(user_sources=UserSources(urls=["https://customer.example/brief"]))
    seen: List[Progress] = []

    async def on_progress(progress: Progress) -> None:
        seen.append(progress)

    result = await engine.acquire(job, AuditTrail(llm, "job_1"), on_progress)

    assert result.discovery_skipped
    assert search.calls == []
    assert llm.calls == []
    assert seen == []
    assert [c.url for c in result.selected] == ["https://customer.example/brief"]
    assert result.selected[0].length == 200_000


@pytest.mark.asyncio
async def test_search_failure_degrades_to_no_sources() -> None:
    llm = FakeLLM()
    engine = _engine(search=FakeSearchClient(error=SearchError("quota exceeded", query="q")))

    result = await engine.acquire(_job(), AuditTrail(llm, "job_1"))

    assert result.search_error is not None
    assert result.discovered == []
    assert result.no_sources
    assert result.source_material() == ""
