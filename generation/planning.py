"""
Structure planning: decide how a job's text is split into sections and writers.

Short texts get no plan (the writer improvises), mid-range texts get one
skeleton, long texts get a JSON plan splitting the skeleton across several
writers. A plan that does not validate is replaced by a deterministic split.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from config import GenerationSettings
from core import Job, PlanMode, StructurePlan, WriterAssignment, parse_headings
from utils.exceptions import LLMError
from .audit import AuditTrail
from .prompts import build_structure_prompt, build_writer_plan_prompt
from .text_utils import strip_code_fences


logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_H2_SPLIT_RE = re.compile(r"(?=<h2\b)", re.IGNORECASE)


def writer_count(length: int, chars_per_writer: int = 48_000, max_writers: int = 7) -> int:
    return max(1, min(math.ceil(length / chars_per_writer), max_writers))


def section_limit(length: int, chars_per_section: int = 3_000) -> int:
    return max(2, math.ceil(length / chars_per_section))


def split_length(total: int, parts: int) -> List[int]:
    """Equal shares; the remainder goes to the last part."""
    parts = max(1, parts)
    share = total // parts
    lengths = [share] * parts
    lengths[-1] += total - share * parts
    return lengths


def rescale_lengths(targets: List[int], total: int) -> List[int]:
    """Scale targets proportionally so they sum to ``total`` (each at least 1)."""
    current = sum(max(0, t) for t in targets)
    if current <= 0:
        return split_length(total, len(targets))
    scaled = [max(1, int(max(0, t) * total / current)) for t in targets]
    scaled[-1] = max(1, scaled[-1] + total - sum(scaled))
    return scaled


def _load_json(raw: str) -> Optional[Dict[str, Any]]:
    text = strip_code_fences(raw)
    candidates = [text]
    match = _JSON_OBJECT_RE.search(text)
    if match and match.group(0) != text:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, TypeError):
            continue
        if isinstance(data, dict):
            return data
    return None


def _target_of(item: Dict[str, Any]) -> int:
    value = item.get("targetLength", item.get("target_length", 0))
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def parse_writer_plan(raw: str, writers: int, length: int) -> Optional[StructurePlan]:
    """
    Validate a JSON writer plan.

    Returns None unless the reply parses, has exactly ``writers`` assignments
    with non-empty structures, and those slices partition the headings of
    ``fullStructure``.
    """
    data = _load_json(raw)
    if data is None:
        return None
    items = data.get("writerAssignments")
    if not isinstance(items, list) or len(items) != writers:
        return None
    if not all(isinstance(item, dict) for item in items):
        return None

    structures = [str(item.get("structure") or "").strip() for item in items]
    if not all(structures):
        return None

    targets = rescale_lengths([_target_of(item) for item in items], length)
    assignments = [
        WriterAssignment(
            index=i,
            sections=str(item.get("sections") or f"part {i}").strip() or f"part {i}",
            structure=structure,
            target_length=target,
        )
        for i, (item, structure, target) in enumerate(zip(items, structures, targets), start=1)
    ]

    declared = StructurePlan(
        mode=PlanMode.MULTI,
        full_structure=str(data.get("fullStructure") or ""),
        assignments=assignments,
    )
    if not declared.headings or not declared.is_partition():
        return None

    return declared.model_copy(update={"full_structure": "\n".join(structures)})


def fallback_plan(raw: str, writers: int, length: int) -> StructurePlan:
    """
    Deterministic plan used when the model's plan does not validate.

    The skeleton (``fullStructure`` when the reply is JSON, otherwise the raw
    text) is cut at ``<h2>`` boundaries into contiguous, equally sized groups.
    With fewer sections than writers every assignment gets the whole text.
    """
    data = _load_json(raw)
    skeleton = str((data or {}).get("fullStructure") or "").strip()
    if not skeleton and data is not None and isinstance(data.get("writerAssignments"), list):
        skeleton = "\n".join(
            str(item.get("structure") or "").strip()
            for item in data["writerAssignments"]
            if isinstance(item, dict)
        ).strip()
    if not skeleton and data is None:
        skeleton = strip_code_fences(raw)

    chunks = [chunk for chunk in _H2_SPLIT_RE.split(skeleton) if chunk.strip()]
    head = ""
    if chunks and not re.match(r"\s*<h2\b", chunks[0], re.IGNORECASE):
        head = chunks.pop(0)

    lengths = split_length(length, writers)
    if len(chunks) >= writers:
        per, extra = divmod(len(chunks), writers)
        slices: List[str] = []
        cursor = 0
        for i in range(writers):
            size = per + (1 if i < extra else 0)
            group = "".join(chunks[cursor:cursor + size])
            cursor += size
            slices.append((head + group) if i == 0 else group)
        assignments = [
            WriterAssignment(index=i, sections=f"part {i} of {writers}", structure=s.strip(), target_length=n)
            for i, (s, n) in enumerate(zip(slices, lengths), start=1)
        ]
        full = "\n".join(a.structure for a in assignments)
    else:
        assignments = [
            WriterAssignment(index=i, sections=f"part {i} of {writers}", structure=skeleton, target_length=n)
            for i, n in enumerate(lengths, start=1)
        ]
        full = skeleton

    return StructurePlan(mode=PlanMode.MULTI, full_structure=full, assignments=assignments, fallback_used=True)


class StructurePlanningEngine:
    """Produces the ``StructurePlan`` for one job."""

    def __init__(self, settings: GenerationSettings):
        self.settings = settings

    def writer_count(self, length: int) -> int:
        return writer_count(length, self.settings.chars_per_writer, self.settings.max_writers)

    def mode_for(self, length: int) -> PlanMode:
        if length < self.settings.planning_threshold:
            return PlanMode.IMPROVISED
        if length < self.settings.multi_writer_threshold:
            return PlanMode.SINGLE
        return PlanMode.MULTI

    async def plan(self, job: Job, audit: AuditTrail) -> StructurePlan:
        mode = self.mode_for(job.length)
        if mode is PlanMode.IMPROVISED:
            plan = StructurePlan(
                mode=mode,
                assignments=[WriterAssignment(index=1, sections="the complete text", target_length=job.length)],
            )
        elif mode is PlanMode.SINGLE:
            plan = await self._single(job, audit)
        else:
            plan = await self._multi(job, audit)

        logger.info(
            "structure_planned job_id=%s mode=%s writers=%s headings=%s fallback=%s",
            job.job_id,
            plan.mode.value,
            plan.writer_count,
            len(plan.headings),
            plan.fallback_used,
        )
        return plan

    async def _single(self, job: Job, audit: AuditTrail) -> StructurePlan:
        limit = section_limit(job.length, self.settings.chars_per_section)
        prompt = build_structure_prompt(job, limit, self.settings.max_subsections)
        try:
            response = await audit.generate(
                "planning",
                prompt,
                max_tokens=4000,
                temperature=self.settings.planner_temperature,
            )
            skeleton = strip_code_fences(response.content)
        except LLMError as exc:
            logger.warning("structure_failed job_id=%s error=%s", job.job_id, exc)
            skeleton = ""

        if not parse_headings(skeleton):
            return StructurePlan(
                mode=PlanMode.SINGLE,
                assignments=[WriterAssignment(index=1, sections="the complete text", target_length=job.length)],
                fallback_used=True,
            )
        return StructurePlan(
            mode=PlanMode.SINGLE,
            full_structure=skeleton,
            assignments=[
                WriterAssignment(
                    index=1,
                    sections="the complete text",
                    structure=skeleton,
                    target_length=job.length,
                )
            ],
        )

    async def _multi(self, job: Job, audit: AuditTrail) -> StructurePlan:
        writers = self.writer_count(job.length)
        prompt = build_writer_plan_prompt(job, writers)
        try:
            response = await audit.generate(
                "planning",
                prompt,
                max_tokens=8000,
                temperature=self.settings.planner_temperature,
            )
            raw = response.content
        except LLMError as exc:
            logger.warning("writer_plan_failed job_id=%s error=%s", job.job_id, exc)
            raw = ""

        plan = parse_writer_plan(raw, writers, job.length)
        if plan is not None:
            return plan
        logger.warning("writer_plan_rejected job_id=%s writers=%s", job.job_id, writers)
        return fallback_plan(raw, writers, job.length)
