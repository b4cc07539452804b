"""
Source acquisition: user sources, query, search, scrape, filter, select.

Individual search and fetch failures are recorded and never abort the job;
with no usable material the job continues in no-sources mode.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import re
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from config import GenerationSettings, ScraperSettings
from core import FetchStatus, Job, Progress, SearchResult, SourceCandidate
from scrapers.base import BaseScrapeClient, BaseSearchClient
from utils.exceptions import LLMError, LongformError
from .audit import AuditTrail
from .prompts import (
    DISCOVERED_SOURCES_BANNER,
    SOURCE_SEPARATOR,
    USER_SOURCES_BANNER,
    build_query_prompt,
    build_selection_prompt,
)


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Progress], Awaitable[None]]

_QUERY_PREFIX_RE = re.compile(
    r"^\s*(?:here is (?:the|your|my) (?:search )?query|search query|query|"
    r"oto zapytanie|zapytanie|suchanfrage|consulta|requête|requete|query di ricerca|запит|запрос)\s*[:：]\s*",
    re.IGNORECASE,
)
_QUOTES = "\"'`«»„“”‚‘’「」『』"
_FALLBACK_MIN_LENGTH = 1000


@dataclass
class AcquisitionResult:
    """Everything the acquisition stage produced for one job."""

    query: str = ""
    discovered: List[SearchResult] = field(default_factory=list)
    user_candidates: List[SourceCandidate] = field(default_factory=list)
    discovered_candidates: List[SourceCandidate] = field(default_factory=list)
    selected_discovered: List[SourceCandidate] = field(default_factory=list)
    rationale: str = ""
    discovery_skipped: bool = False
    search_error: Optional[str] = None

    @property
    def scraped(self) -> List[SourceCandidate]:
        return list(self.user_candidates) + list(self.discovered_candidates)

    @property
    def selected(self) -> List[SourceCandidate]:
        """User sources that fetched successfully, then the chosen discovered ones."""
        return [c for c in self.user_candidates if c.succeeded] + list(self.selected_discovered)

    @property
    def no_sources(self) -> bool:
        return not self.selected

    def source_material(self) -> str:
        return compose_source_material(self.selected)


def clean_query(reply: str, fallback: str, max_words: int = 8) -> str:
    """Strip labels, quotes and line breaks from a query reply and cap its length."""
    text = str(reply or "").strip()
    text = _QUERY_PREFIX_RE.sub("", text)
    text = text.replace("\r", " ").replace("\n", " ")
    text = text.strip().strip(_QUOTES).strip()
    text = re.sub(r"\s+", " ", text)
    if not text:
        text = re.sub(r"\s+", " ", str(fallback or "")).strip()
    words = text.split(" ")
    return " ".join(words[:max_words]) if len(words) > max_words else text


def parse_selection(reply: str, count: int, max_selected: int = 8) -> List[int]:
    """1-based source numbers from a reply such as ``"1, 3,5"``; deduplicated and range-checked."""
    numbers: List[int] = []
    for token in re.findall(r"\d+", str(reply or "")):
        value = int(token)
        if 1 <= value <= count and value not in numbers:
            numbers.append(value)
        if len(numbers) >= max_selected:
            break
    return numbers


def longest_first(candidates: Sequence[SourceCandidate], exclude: Sequence[int] = ()) -> List[int]:
    """Indexes (0-based) by descending length, preferring sources over the fallback floor."""
    order = sorted(
        (i for i in range(len(candidates)) if i not in exclude),
        key=lambda i: (candidates[i].length > _FALLBACK_MIN_LENGTH, candidates[i].length),
        reverse=True,
    )
    return order


def compose_source_material(candidates: Sequence[SourceCandidate]) -> str:
    """User sources under a priority banner, then discovered sources."""
    user = [c.text for c in candidates if c.succeeded and c.is_user_source and c.text]
    discovered = [c.text for c in candidates if c.succeeded and not c.is_user_source and c.text]
    parts: List[str] = []
    if user:
        parts.append(f"{USER_SOURCES_BANNER}\n\n" + SOURCE_SEPARATOR.join(user))
    if discovered:
        parts.append(f"{DISCOVERED_SOURCES_BANNER}\n\n" + SOURCE_SEPARATOR.join(discovered))
    return "\n\n".join(parts)


class SourceAcquisitionEngine:
    """Builds the ranked source set that grounds one job."""

    def __init__(
        self,
        search_client: BaseSearchClient,
        scrape_client: BaseScrapeClient,
        scraper_settings: ScraperSettings,
        generation_settings: GenerationSettings,
    ):
        self.search_client = search_client
        self.scrape_client = scrape_client
        self.scraper_settings = scraper_settings
        self.settings = generation_settings

    async def acquire(
        self,
        job: Job,
        audit: AuditTrail,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AcquisitionResult:
        result = AcquisitionResult()

        user_urls = self._user_urls(job)
        if user_urls:
            result.user_candidates = await self.scrape_batch(user_urls, user=True)
        user_chars = sum(c.length for c in result.user_candidates if c.succeeded)

        if user_chars >= self.settings.user_source_threshold:
            result.discovery_skipped = True
            result.rationale = (
                f"discovery skipped: user sources provide {user_chars} characters "
                f"(threshold {self.settings.user_source_threshold})"
            )
            logger.info("discovery_skipped job_id=%s user_chars=%s", job.job_id, user_chars)
            return result

        await self._progress(on_progress, Progress.QUERY)
        result.query = await self.generate_query(job, audit)

        await self._progress(on_progress, Progress.SEARCH)
        try:
            result.discovered = await self.search_client.search(
                result.query,
                language=job.language.value,
            )
        except LongformError as exc:
            result.search_error = str(exc)
            logger.warning("search_failed job_id=%s query=%r error=%s", job.job_id, result.query, exc)

        await self._progress(on_progress, Progress.SCRAPING_ALL)
        urls = _unique([item.url for item in result.discovered if item.url])
        result.discovered_candidates = await self.scrape_batch(urls, user=False)
        usable = [c for c in result.discovered_candidates if self.is_usable(c)]
        logger.info(
            "sources_usable job_id=%s usable=%s fetched=%s",
            job.job_id,
            len(usable),
            len(result.discovered_candidates),
        )

        await self._progress(on_progress, Progress.SELECTING)
        result.selected_discovered, result.rationale = await self.select(job, usable, audit)
        return result

    @staticmethod
    def _user_urls(job: Job) -> List[str]:
        if job.user_sources is None:
            return []
        urls = list(job.user_sources.urls) + [f.url for f in job.user_sources.files if f.url]
        return _unique(urls)

    @staticmethod
    async def _progress(callback: Optional[ProgressCallback], progress: Progress) -> None:
        if callback is not None:
            await callback(progress)

    async def generate_query(self, job: Job, audit: AuditTrail) -> str:
        prompt = build_query_prompt(job)
        try:
            response = await audit.generate(
                "query",
                prompt,
                max_tokens=100,
                temperature=self.settings.utility_temperature,
            )
            reply = response.content
        except LLMError as exc:
            logger.warning("query_generation_failed job_id=%s error=%s", job.job_id, exc)
            reply = ""
        query = clean_query(reply, job.topic, self.settings.query_max_words)
        logger.info("search_query job_id=%s query=%r", job.job_id, query)
        return query

    async def scrape_batch(self, urls: Sequence[str], *, user: bool) -> List[SourceCandidate]:
        """
        Fetch URLs one after another under a shared character budget.

        Each source may take at most the remaining budget divided by the
        number of sources still to fetch.
        """
        budget = self.scraper_settings.user_budget if user else self.scraper_settings.discovered_budget
        timeout = self.scraper_settings.user_timeout if user else self.scraper_settings.discovered_timeout
        total = 0
        candidates: List[SourceCandidate] = []

        for i, url in enumerate(urls):
            if i > 0 and self.scraper_settings.inter_fetch_delay > 0:
                await asyncio.sleep(self.scraper_settings.inter_fetch_delay)
            try:
                text = await asyncio.wait_for(self.scrape_client.scrape(url, timeout), timeout=timeout + 5)
            except asyncio.TimeoutError:
                candidates.append(_failed(url, f"timed out after {timeout:.0f}s", user))
                logger.warning("scrape_timeout url=%s timeout=%s", url, timeout)
                continue
            except Exception as exc:
                candidates.append(_failed(url, str(exc), user))
                logger.warning("scrape_failed url=%s error=%s", url, exc)
                continue

            original_length = len(text)
            cap = max(0, (budget - total) // (len(urls) - i))
            if original_length > cap:
                text = text[:cap]
            total += len(text)
            candidates.append(
                SourceCandidate(
                    url=url,
                    text=text,
                    length=len(text),
                    original_length=original_length,
                    status=FetchStatus.SUCCESS,
                    is_user_source=user,
                )
            )
            logger.debug("scraped url=%s chars=%s total=%s budget=%s", url, len(text), total, budget)
        return candidates

    def is_usable(self, candidate: SourceCandidate) -> bool:
        if not candidate.succeeded or candidate.length <= self.scraper_settings.min_length:
            return False
        return not any(marker in candidate.text for marker in self.scraper_settings.failure_markers)

    async def select(
        self,
        job: Job,
        candidates: Sequence[SourceCandidate],
        audit: AuditTrail,
    ) -> Tuple[List[SourceCandidate], str]:
        """Model-ranked subset of usable candidates, with deterministic fallbacks."""
        minimum, maximum = self.settings.min_selected, self.settings.max_selected
        if not candidates:
            return [], "no usable discovered sources"
        if len(candidates) <= minimum:
            return list(candidates), f"all {len(candidates)} usable sources kept"

        prompt = build_selection_prompt(job, candidates, self.settings.preview_chars)
        try:
            response = await audit.generate(
                "selection",
                prompt,
                max_tokens=150,
                temperature=self.settings.utility_temperature,
            )
            reply = response.content
        except LLMError as exc:
            logger.warning("selection_failed job_id=%s error=%s", job.job_id, exc)
            reply = ""

        numbers = parse_selection(reply, len(candidates), maximum)
        if not numbers:
            picked = longest_first(candidates)[:minimum]
            rationale = f"fallback: {len(picked)} longest sources (reply {reply.strip()[:80]!r} unusable)"
        else:
            picked = [n - 1 for n in numbers]
            rationale = "model selected " + ",".join(str(n) for n in numbers)
            if len(picked) < minimum:
                extra = longest_first(candidates, exclude=picked)[: minimum - len(picked)]
                picked.extend(extra)
                rationale += "; topped up with " + ",".join(str(i + 1) for i in extra)

        logger.info("sources_selected job_id=%s picked=%s", job.job_id, [i + 1 for i in picked])
        return [candidates[i] for i in picked], rationale


def _failed(url: str, error: str, user: bool) -> SourceCandidate:
    return SourceCandidate(
        url=url,
        text="",
        length=0,
        original_length=0,
        status=FetchStatus.FAILED,
        is_user_source=user,
        error=error,
    )


def _unique(items: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for item in items:
        key = str(item).strip()
        if key and key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered
