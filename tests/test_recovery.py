from __future__ import annotations

import pytest

from config import GenerationSettings
from core import FinishSignal, Job, parse_headings
from generation.audit import AuditTrail
from generation.recovery import RecoveryState, TruncationRecoveryEngine, merge_continuation
from generation.text_utils import ends_with_closed_block, extract_headings
from intelligence.llm import LLMResponse

from tests.fakes import FakeLLM


def _job() -> Job:
    return Job(job_id="job_r", topic="Sourdough baking", length=12_000, language="en")


PLANNED = parse_headings(
    "<h1>Sourdough guide</h1><h2>Starter care</h2><h2>Mixing the dough</h2><h2>Baking day</h2>"
)


def _truncated() -> str:
    return (
        "<h1>Sourdough guide</h1>\n<h2>Starter care</h2>\n"
        "<p>Feed the starter daily. Keep it warm and covered.</p>\n"
        "<h2>Mixing the dough</h2>\n<p>Combine flour and water. Then add the sta"
    )


@pytest.mark.asyncio
async def test_complete_signal_returns_output_unchanged() -> None:
    llm = FakeLLM()
    engine = TruncationRecoveryEngine(GenerationSettings())

    outcome = await engine.recover(
        _job(), "<p>Anything.</p>", FinishSignal.COMPLETE, PLANNED, audit=AuditTrail(llm, "job_r")
    )

    assert outcome.state is RecoveryState.COMPLETE
    assert outcome.text == "<p>Anything.</p>"
    assert outcome.attempts == 0


@pytest.mark.asyncio
async def test_length_limited_but_complete_text_is_idempotent() -> None:
    llm = FakeLLM()
    engine = TruncationRecoveryEngine(GenerationSettings())
    text = (
        "<h1>Sourdough guide</h1><h2>Starter care</h2><p>Feed it.</p>"
        "<h2>Mixing the dough</h2><p>Mix it.</p><h2>Baking day</h2><p>Bake it.</p>"
    )

    outcome = await engine.recover(
        _job(), text, FinishSignal.LENGTH_LIMITED, PLANNED, audit=AuditTrail(llm, "job_r")
    )

    assert outcome.text == text
    assert outcome.state is RecoveryState.COMPLETE
    assert llm.calls == []


@pytest.mark.asyncio
async def test_truncated_output_is_continued_with_missing_headings() -> None:
    llm = FakeLLM()
    engine = TruncationRecoveryEngine(GenerationSettings())

    outcome = await engine.recover(
        _job(),
        _truncated(),
        FinishSignal.LENGTH_LIMITED,
        PLANNED,
        audit=AuditTrail(llm, "job_r"),
        assignment_index=1,
        target_length=3_000,
    )

    assert outcome.state is RecoveryState.COMPLETE
    assert outcome.attempts == 1
    assert outcome.missing == []
    prompt = llm.calls_for("continue")[0]["prompt"]
    assert "- <h2>Baking day</h2>" in prompt
    assert "- <h2>Starter care</h2>" not in prompt
    assert "Then add the sta" not in outcome.text
    texts = [h.text for h in extract_headings(outcome.text)]
    assert texts == ["Sourdough guide", "Starter care", "Mixing the dough", "Baking day"]
    assert ends_with_closed_block(outcome.text)


@pytest.mark.asyncio
async def test_recovery_stops_at_attempt_bound() -> None:
    truncated = LLMResponse(content="<p>More words but still", model="fake", finish_reason="length")
    llm = FakeLLM().script("continue", truncated, truncated, truncated, truncated)
    engine = TruncationRecoveryEngine(GenerationSettings(continuation_attempts=3))

    outcome = await engine.recover(
        _job(),
        _truncated(),
        FinishSignal.LENGTH_LIMITED,
        PLANNED,
        audit=AuditTrail(llm, "job_r"),
        target_length=3_000,
    )

    assert outcome.state is RecoveryState.EXHAUSTED
    assert outcome.attempts == 3
    assert len(llm.calls_for("continue")) == 3
    assert [h.text for h in outcome.missing] == ["Baking day"]
    assert ends_with_closed_block(outcome.text)


@pytest.mark.asyncio
async def test_continuation_never_duplicates_written_sections() -> None:
    repeat = (
        "<h2>Starter care</h2><p>Repeated starter section that must not come back.</p>"
        "<h3>Feeding schedule</h3><p>A subsection of the repeated section.</p>"
        "<h2>Baking day</h2><p>Preheat the oven. Bake for forty minutes.</p>"
    )
    llm = FakeLLM().script("continue", repeat)
    engine = TruncationRecoveryEngine(GenerationSettings())

    outcome = await engine.recover(
        _job(),
        _truncated(),
        FinishSignal.LENGTH_LIMITED,
        PLANNED,
        audit=AuditTrail(llm, "job_r"),
    )

    texts = [h.text for h in extract_headings(outcome.text)]
    assert texts.count("Starter care") == 1
    assert "Feeding schedule" not in texts
    assert "Baking day" in texts
    assert outcome.state is RecoveryState.COMPLETE


def test_merge_continuation_wraps_leading_text_and_drops_second_title() -> None:
    existing = "<h1>Title</h1><h2>One</h2><p>Done.</p>"
    continuation = "more words to close the thought</p><h1>Title again</h1><p>Dropped.</p><h2>Two</h2><p>Kept.</p>"

    merged = merge_continuation(existing, continuation)

    assert merged.startswith(existing)
    assert "<p>more words to close the thought.</p>" in merged
    assert "Title again" not in merged
    assert "Dropped." not in merged
    assert "<h2>Two</h2>" in merged
    assert "Kept." in merged


@pytest.mark.asyncio
async def test_planned_heading_containing_a_written_one_is_still_requested() -> None:
    planned = parse_headings("<h1>Guide</h1><h2>Costs</h2><h2>Hidden costs</h2>")
    truncated = (
        "<h1>Guide</h1>\n<h2>Costs</h2>\n"
        "<p>Rent is the largest cost. Insurance comes next and can be sur"
    )
    llm = FakeLLM()
    engine = TruncationRecoveryEngine(GenerationSettings())

    outcome = await engine.recover(
        _job(),
        truncated,
        FinishSignal.LENGTH_LIMITED,
        planned,
        audit=AuditTrail(llm, "job_r"),
        target_length=3_000,
    )

    assert "- <h2>Hidden costs</h2>" in llm.calls_for("continue")[0]["prompt"]
    assert [h.text for h in extract_headings(outcome.text)] == ["Guide", "Costs", "Hidden costs"]
    assert outcome.missing == []
    assert outcome.state is RecoveryState.COMPLETE


def test_merge_keeps_planned_sections_and_repeated_subheadings() -> None:
    existing = "<h2>Costs</h2><h3>Examples</h3><p>One.</p>"
    continuation = (
        "<h2>Hidden costs</h2><p>Two.</p><h3>Examples</h3><p>Three.</p>"
        "<h2>Costs</h2><p>Again.</p>"
    )
    planned = parse_headings("<h2>Hidden costs</h2><h3>Examples</h3>")

    merged = merge_continuation(existing, continuation, planned=planned)

    assert [(h.level, h.text) for h in extract_headings(merged)] == [
        (2, "Costs"),
        (3, "Examples"),
        (2, "Hidden costs"),
        (3, "Examples"),
    ]
    assert "Three." in merged
    assert "Again." not in merged


def test_merge_drops_planned_heading_only_when_written_verbatim() -> None:
    existing = "<h2>Safety</h2><p>Ropes.</p>"
    planned = parse_headings("<h2>Safety equipment checklist</h2>")

    kept = merge_continuation(existing, "<h2>Safety equipment checklist</h2><p>Helmet.</p>", planned=planned)
    dropped = merge_continuation(kept, "<h2>Safety equipment checklist</h2><p>Helmet again.</p>", planned=planned)

    assert "Helmet." in kept
    assert dropped == kept
