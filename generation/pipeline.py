"""
Per-job pipeline: acquisition → planning → synthesis → validation → persistence.

Each stage's output is written to the store before the next stage starts. A
failure freezes the job in ``error`` with the failing stage recorded; content
written so far is kept for inspection.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Callable, Optional, TypeVar

from config import Settings, get_settings
from core import (
    GenerationAttempt,
    JobContent,
    JobRecord,
    Progress,
    ScrapedSourceRecord,
    SelectedSourceRecord,
)
from intelligence.llm import BaseLLM
from orchestrator.store import JobStore, write_with_retry
from scrapers.base import BaseScrapeClient, BaseSearchClient
from utils.exceptions import LongformError, StageError
from .audit import AuditTrail
from .planning import StructurePlanningEngine
from .recovery import TruncationRecoveryEngine
from .sources import AcquisitionResult, SourceAcquisitionEngine
from .synthesis import SegmentedSynthesisEngine
from .validation import PostGenerationValidator


logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGES = ("acquisition", "planning", "synthesis", "validation", "persistence")


def content_from_acquisition(acquired: AcquisitionResult) -> JobContent:
    return JobContent(
        search_query=acquired.query,
        all_discovered_results=list(acquired.discovered),
        scraped_sources=[ScrapedSourceRecord.from_candidate(c) for c in acquired.scraped],
        selected_sources=[
            SelectedSourceRecord(
                url=c.url,
                length=c.length,
                status=c.status,
                is_user_source=c.is_user_source,
                text=c.text,
            )
            for c in acquired.selected
        ],
        selection_rationale=acquired.rationale,
        discovery_skipped=acquired.discovery_skipped,
        no_sources_available=acquired.no_sources,
    )


class JobPipeline:
    """Runs one job end to end against injected collaborators."""

    def __init__(
        self,
        store: JobStore,
        llm: BaseLLM,
        search_client: BaseSearchClient,
        scrape_client: BaseScrapeClient,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.llm = llm
        self.search_client = search_client
        self.scrape_client = scrape_client
        self.settings = settings
        self.acquisition = SourceAcquisitionEngine(
            search_client,
            scrape_client,
            settings.scraper,
            settings.generation,
        )
        self.planner = StructurePlanningEngine(settings.generation)
        self.synthesis = SegmentedSynthesisEngine(
            settings.generation,
            TruncationRecoveryEngine(settings.generation),
        )
        self.validator = PostGenerationValidator(settings.generation)

    async def aclose(self) -> None:
        """Release the HTTP and model clients; they are rebuilt on next use."""
        await self.search_client.close()
        await self.scrape_client.close()
        await self.llm.aclose()

    async def _write(self, operation: Callable[..., T], *args: Any) -> T:
        return await write_with_retry(
            operation,
            *args,
            attempts=self.settings.store.write_retries,
            wait=self.settings.store.write_retry_wait,
        )

    async def _set_progress(self, job_id: str, progress: Progress) -> None:
        await self._write(self.store.set_progress, job_id, progress)
        logger.info("job_progress job_id=%s progress=%s", job_id, progress.value)

    def _attempt_sink(self, job_id: str):
        async def sink(attempt: GenerationAttempt) -> None:
            await self._write(self.store.append_attempt, job_id, attempt)

        return sink

    async def run(self, job_id: str) -> JobRecord:
        """
        Run every stage for ``job_id`` and return the final record.

        Jobs already in a terminal state are returned untouched. Stage
        failures end in ``error``; ``StageError`` is raised only when even the
        failure cannot be recorded.
        """
        record = await self._write(self.store.get, job_id)
        if record.is_terminal:
            logger.info("job_skipped job_id=%s progress=%s", job_id, record.progress.value)
            return record

        job = record.job
        audit = AuditTrail(self.llm, job_id, sink=self._attempt_sink(job_id))
        stage = STAGES[0]
        try:
            logger.info("job_stage_start job_id=%s stage=%s", job_id, stage)
            await self._write(self.store.mark_started, job_id)
            acquired = await self.acquisition.acquire(
                job,
                audit,
                on_progress=lambda progress: self._set_progress(job_id, progress),
            )
            content = content_from_acquisition(acquired)
            await self._write(self.store.update_content, job_id, content)

            stage = "planning"
            logger.info("job_stage_start job_id=%s stage=%s", job_id, stage)
            await self._set_progress(job_id, Progress.WRITING)
            plan = await self.planner.plan(job, audit)
            content.structure_plan = plan
            await self._write(self.store.update_content, job_id, content)

            stage = "synthesis"
            logger.info("job_stage_start job_id=%s stage=%s", job_id, stage)
            synthesized = await self.synthesis.synthesize(job, plan, acquired.source_material(), audit)
            content.generated_content = synthesized.text
            await self._write(self.store.update_content, job_id, content)

            stage = "validation"
            logger.info("job_stage_start job_id=%s stage=%s", job_id, stage)
            validated = await self.validator.validate(job, synthesized.text, audit)
            content.generated_content = validated.text
            content.validation = validated.to_dict()
            content.generated_at = datetime.now(timezone.utc)

            stage = "persistence"
            logger.info("job_stage_start job_id=%s stage=%s", job_id, stage)
            record = await self._write(self.store.mark_completed, job_id, content)
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            logger.error("job_failed job_id=%s stage=%s error=%s", job_id, stage, message)
            try:
                return await self._write(self.store.mark_failed, job_id, stage, message)
            except LongformError as store_exc:
                raise StageError(
                    f"Job {job_id} failed and the failure could not be recorded: {store_exc}",
                    stage=stage,
                    job_id=job_id,
                ) from exc

        logger.info(
            "job_completed job_id=%s chars=%s continuations=%s links_missing=%s",
            job_id,
            len(content.generated_content),
            synthesized.continuations,
            len(validated.links.missing_after),
        )
        return record
