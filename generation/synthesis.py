"""Segmented synthesis: one writer call per assignment, strictly in order."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import List, Optional, Tuple

from config import GenerationSettings
from core import Job, PlanMode, StructurePlan, WriterAssignment
from .audit import AuditTrail
from .prompts import build_writer_prompt, token_ceiling
from .recovery import RecoveryOutcome, TruncationRecoveryEngine, merge_continuation
from .text_utils import document_length, extract_headings, strip_code_fences, tail


logger = logging.getLogger(__name__)


def structural_quotas(length: int) -> Tuple[int, int]:
    """Minimum (lists, tables) requested from a writer producing ``length`` characters."""
    return max(1, length // 50_000), max(1, length // 15_000)


@dataclass
class SynthesisResult:
    text: str
    outcomes: List[RecoveryOutcome] = field(default_factory=list)

    @property
    def continuations(self) -> int:
        return sum(outcome.attempts for outcome in self.outcomes)


class SegmentedSynthesisEngine:
    """
    Writes the document assignment by assignment.

    Later writers see the tail of what is already written and the section
    labels done so far; each output goes through truncation recovery before
    it is appended.
    """

    def __init__(self, settings: GenerationSettings, recovery: Optional[TruncationRecoveryEngine] = None):
        self.settings = settings
        self.recovery = recovery or TruncationRecoveryEngine(settings)

    def max_tokens_for(self, target_length: int) -> int:
        return token_ceiling(
            target_length,
            chars_per_token=self.settings.chars_per_token,
            margin=self.settings.token_margin,
            floor=self.settings.token_floor,
            ceiling=self.settings.token_ceiling,
        )

    async def synthesize(
        self,
        job: Job,
        plan: StructurePlan,
        sources: str,
        audit: AuditTrail,
    ) -> SynthesisResult:
        source_text = (sources or "")[: self.settings.source_prompt_chars]
        # planned headings are reconciled only when each belongs to exactly one slice
        reconcile = plan.mode is not PlanMode.IMPROVISED and plan.is_partition()
        total = plan.writer_count
        document = ""
        result = SynthesisResult(text="")

        for assignment in plan.assignments:
            outcome = await self._write_assignment(
                job,
                plan,
                assignment,
                total,
                source_text,
                document,
                audit,
                reconcile,
            )
            result.outcomes.append(outcome)
            part = outcome.text
            if assignment.index == 1 or not document:
                document = part
            else:
                document = merge_continuation(
                    document,
                    part,
                    self.settings.heading_similarity,
                    assignment.headings if reconcile else (),
                )
            logger.info(
                "assignment_written job_id=%s part=%s/%s chars=%s target=%s document_chars=%s",
                job.job_id,
                assignment.index,
                total,
                document_length(part),
                assignment.target_length,
                document_length(document),
            )

        result.text = document
        return result

    async def _write_assignment(
        self,
        job: Job,
        plan: StructurePlan,
        assignment: WriterAssignment,
        total: int,
        sources: str,
        document: str,
        audit: AuditTrail,
        reconcile: bool,
    ) -> RecoveryOutcome:
        lists, tables = structural_quotas(assignment.target_length)
        improvised = plan.mode is PlanMode.IMPROVISED or not assignment.structure.strip()
        later = assignment.index > 1 and bool(document)
        completed: List[str] = []
        if later:
            completed = [a.sections for a in plan.assignments[: assignment.index - 1] if a.sections.strip()]
            labels = {label.strip().lower() for label in completed}
            completed.extend(
                h.text for h in extract_headings(document) if h.level == 2 and h.text.strip().lower() not in labels
            )

        prompt = build_writer_prompt(
            job,
            assignment,
            total_parts=total,
            sources=sources,
            lists=lists,
            tables=tables,
            improvised=improvised,
            previous_tail=tail(document, self.settings.context_window_chars) if later else "",
            completed_sections=completed,
            include_seo=assignment.index == 1,
        )
        response = await audit.generate(
            "synthesis",
            prompt,
            max_tokens=self.max_tokens_for(assignment.target_length),
            temperature=self.settings.writer_temperature,
            assignment_index=assignment.index,
        )

        return await self.recovery.recover(
            job,
            strip_code_fences(response.content),
            response.signal,
            assignment.headings if reconcile else (),
            audit=audit,
            assignment_index=assignment.index,
            target_length=assignment.target_length,
            is_last=assignment.index == total,
        )
