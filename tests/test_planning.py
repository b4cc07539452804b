from __future__ import annotations

import json

import pytest

from config import GenerationSettings
from core import Job, PlanMode
from generation.audit import AuditTrail
from generation.planning import (
    StructurePlanningEngine,
    fallback_plan,
    parse_writer_plan,
    rescale_lengths,
    section_limit,
    split_length,
    writer_count,
)

from tests.fakes import FakeLLM


def _job(length: int) -> Job:
    return Job(job_id="job_p", topic="Home espresso", length=length, language="en")


def _plan_json(slices, full=None, targets=None) -> str:
    assignments = [
        {
            "writer": i,
            "sections": f"part {i}",
            "structure": structure,
            "targetLength": (targets or [1000] * len(slices))[i - 1],
        }
        for i, structure in enumerate(slices, start=1)
    ]
    return json.dumps({"fullStructure": full if full is not None else "".join(slices), "writerAssignments": assignments})


def test_writer_count_and_section_limit() -> None:
    assert writer_count(50_000) == 2
    assert writer_count(96_000) == 2
    assert writer_count(96_001) == 3
    assert writer_count(1_000_000) == 7
    assert section_limit(2_000) == 2
    assert section_limit(12_000) == 4
    assert section_limit(12_001) == 5


def test_length_splits_sum_to_total() -> None:
    assert split_length(10_001, 3) == [3333, 3333, 3335]
    scaled = rescale_lengths([1, 1, 2], 60_000)
    assert sum(scaled) == 60_000
    assert scaled[2] == 30_000


def test_mode_thresholds() -> None:
    engine = StructurePlanningEngine(GenerationSettings())
    assert engine.mode_for(9_999) is PlanMode.IMPROVISED
    assert engine.mode_for(10_000) is PlanMode.SINGLE
    assert engine.mode_for(49_999) is PlanMode.SINGLE
    assert engine.mode_for(50_000) is PlanMode.MULTI


def test_parse_writer_plan_accepts_partition_and_rescales() -> None:
    slices = ["<h1>T</h1><h2>A</h2><h2>B</h2>", "<h2>C</h2><h3>C1</h3>", "<h2>D</h2>"]
    plan = parse_writer_plan(_plan_json(slices, targets=[10, 10, 20]), writers=3, length=120_000)

    assert plan is not None
    assert plan.mode is PlanMode.MULTI
    assert not plan.fallback_used
    assert plan.is_partition()
    assert [a.target_length for a in plan.assignments] == [30_000, 30_000, 60_000]
    assert [h.text for h in plan.headings] == ["T", "A", "B", "C", "C1", "D"]


def test_repeated_subheading_under_different_sections_is_a_partition() -> None:
    slices = [
        "<h1>T</h1><h2>Costs</h2><h3>Examples</h3>",
        "<h2>Hidden costs</h2><h3>Examples</h3>",
    ]

    plan = parse_writer_plan(_plan_json(slices), writers=2, length=60_000)

    assert plan is not None
    assert plan.is_partition()
    assert [h.text for h in plan.headings].count("Examples") == 2

    repeated = ["<h2>Costs</h2><h3>Examples</h3><h3>Examples</h3>", "<h2>Hidden costs</h2>"]
    assert parse_writer_plan(_plan_json(repeated), writers=2, length=60_000) is None


def test_parse_writer_plan_handles_code_fences() -> None:
    raw = "```json\n" + _plan_json(["<h2>A</h2>", "<h2>B</h2>"]) + "\n```"
    assert parse_writer_plan(raw, writers=2, length=60_000) is not None


def test_parse_writer_plan_rejects_mismatches() -> None:
    slices = ["<h2>A</h2>", "<h2>B</h2>"]
    assert parse_writer_plan(_plan_json(slices), writers=3, length=60_000) is None
    assert parse_writer_plan("not json at all", writers=2, length=60_000) is None
    overlapping = ["<h2>A</h2><h2>B</h2>", "<h2>B</h2>"]
    assert parse_writer_plan(_plan_json(overlapping, full="<h2>A</h2><h2>B</h2>"), writers=2, length=60_000) is None
    empty = ["<h2>A</h2>", ""]
    assert parse_writer_plan(_plan_json(empty), writers=2, length=60_000) is None


def test_fallback_plan_splits_at_h2_boundaries() -> None:
    raw = "<h1>T</h1><p>intro</p>" + "".join(f"<h2>S{i}</h2><p>n</p>" for i in range(1, 6))

    plan = fallback_plan(raw, writers=2, length=100_001)

    assert plan.fallback_used
    assert plan.writer_count == 2
    assert [h.text for h in plan.assignments[0].headings] == ["T", "S1", "S2", "S3"]
    assert [h.text for h in plan.assignments[1].headings] == ["S4", "S5"]
    assert [a.target_length for a in plan.assignments] == [50_000, 50_001]
    assert plan.is_partition()


def test_fallback_plan_reuses_raw_text_when_too_few_sections() -> None:
    raw = "<h1>T</h1><h2>Only</h2>"

    plan = fallback_plan(raw, writers=3, length=150_000)

    assert all(a.structure == raw for a in plan.assignments)
    assert sum(a.target_length for a in plan.assignments) == 150_000


@pytest.mark.asyncio
async def test_short_job_is_improvised_without_model_call() -> None:
    llm = FakeLLM()
    plan = await StructurePlanningEngine(GenerationSettings()).plan(_job(2_000), AuditTrail(llm, "job_p"))

    assert plan.mode is PlanMode.IMPROVISED
    assert plan.writer_count == 1
    assert plan.assignments[0].target_length == 2_000
    assert llm.calls == []


@pytest.mark.asyncio
async def test_mid_length_job_gets_single_skeleton() -> None:
    llm = FakeLLM()
    plan = await StructurePlanningEngine(GenerationSettings()).plan(_job(12_000), AuditTrail(llm, "job_p"))

    assert plan.mode is PlanMode.SINGLE
    assert plan.writer_count == 1
    assert len([h for h in plan.headings if h.level == 2]) == 4
    assert plan.assignments[0].structure == plan.full_structure
    assert "At most 4 main sections" in llm.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_long_job_uses_model_plan() -> None:
    llm = FakeLLM()
    plan = await StructurePlanningEngine(GenerationSettings()).plan(_job(150_000), AuditTrail(llm, "job_p"))

    assert plan.mode is PlanMode.MULTI
    assert plan.writer_count == 4
    assert not plan.fallback_used
    assert sum(a.target_length for a in plan.assignments) == 150_000


@pytest.mark.asyncio
async def test_long_job_falls_back_on_wrong_assignment_count() -> None:
    raw = _plan_json(["<h1>T</h1><h2>A</h2>", "<h2>B</h2>", "<h2>C</h2>"])
    llm = FakeLLM().script("writer-plan", raw)

    plan = await StructurePlanningEngine(GenerationSettings()).plan(_job(60_000), AuditTrail(llm, "job_p"))

    assert plan.fallback_used
    assert plan.writer_count == 2
    assert sum(a.target_length for a in plan.assignments) == 60_000
    assert plan.is_partition()
