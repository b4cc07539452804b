"""
Truncation recovery.

A writer call that stops on the output limit is continued from its trailing
context until the planned headings are all written or the attempt bound is
reached. Whatever the exit, the text ends on a closed block.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import re
from typing import List, Optional, Sequence, Tuple

from config import GenerationSettings
from core import FinishSignal, Job, SectionHeading
from .audit import AuditTrail
from .prompts import build_continuation_prompt, token_ceiling
from .text_utils import (
    document_length,
    drop_overlap,
    ensure_closed_block,
    extract_headings,
    heading_similarity,
    looks_complete,
    missing_headings,
    normalize_heading,
    plain_text,
    same_scope,
    scoped_headings,
    split_sections,
    strip_code_fences,
    tail,
    trim_to_last_sentence,
)


logger = logging.getLogger(__name__)

_LEADING_BLOCK_RE = re.compile(r"<(?:p|ul|ol|table|h[1-6]|blockquote|div)\b", re.IGNORECASE)
_STRAY_PARAGRAPH_TAG_RE = re.compile(r"</?(?:p|div)\s*>", re.IGNORECASE)
_MIN_CONTINUATION_CHARS = 2_000


class RecoveryState(str, Enum):
    GENERATED = "generated"
    COMPLETE = "complete"
    LENGTH_LIMITED = "length-limited"
    EXHAUSTED = "exhausted"


@dataclass
class RecoveryOutcome:
    text: str
    state: RecoveryState
    attempts: int = 0
    missing: List[SectionHeading] = field(default_factory=list)

    @property
    def continued(self) -> bool:
        return self.attempts > 0


def _wrap_leading_text(chunk: str) -> str:
    """Bare text before the first block element becomes its own paragraph."""
    match = _LEADING_BLOCK_RE.search(chunk)
    bare, rest = (chunk[: match.start()], chunk[match.start():]) if match else (chunk, "")
    bare = _STRAY_PARAGRAPH_TAG_RE.sub("", bare).strip()
    if not plain_text(bare):
        return rest.strip()
    if not re.search(r"[.!?…:]$", plain_text(bare)):
        bare += "."
    return f"<p>{bare}</p>\n{rest.strip()}".strip()


def _scope_key(parent: str, heading: SectionHeading) -> Tuple[int, str, str]:
    return (heading.level, normalize_heading(parent) if heading.level > 2 else "", normalize_heading(heading.text))


def merge_continuation(
    existing: str,
    continuation: str,
    threshold: float = 0.8,
    planned: Sequence[SectionHeading] = (),
) -> str:
    """
    Append a continuation without repeating what ``existing`` already holds.

    Leading text that overlaps the tail is dropped, as is every section whose
    heading is already written (together with its subsections). A second
    ``<h1>`` is never kept. A heading from ``planned`` is dropped only when
    the same heading, under the same ``<h2>``, is already written.
    """
    base = str(existing or "").rstrip()
    text = drop_overlap(base, strip_code_fences(continuation))
    if not text:
        return base

    written = scoped_headings(extract_headings(base))
    written_keys = {_scope_key(parent, heading) for parent, heading in written}
    has_title = any(h.level == 1 for _, h in written)
    parent = next((h.text for _, h in reversed(written) if h.level == 2), "")
    kept: List[str] = []
    skip_level: Optional[int] = None
    for heading, chunk in split_sections(text):
        if heading is None:
            kept.append(_wrap_leading_text(chunk))
            continue
        if skip_level is not None and heading.level > skip_level:
            continue
        skip_level = None
        if heading.level == 2:
            parent = heading.text
        scope = parent if heading.level > 2 else ""

        if heading.level == 1:
            duplicate = has_title
        elif any(heading_similarity(heading.text, p.text) >= threshold for p in planned):
            duplicate = _scope_key(scope, heading) in written_keys
        else:
            duplicate = any(
                heading_similarity(heading.text, w.text) >= threshold
                and (heading.level < 3 or (w.level == 3 and same_scope(scope, w_parent, threshold)))
                for w_parent, w in written
            )
        if duplicate:
            logger.debug("continuation_duplicate_dropped heading=%r", heading.text)
            # a repeated title drops only its own chunk
            skip_level = heading.level if heading.level > 1 else None
            continue
        kept.append(chunk.strip())
        written.append((scope, heading))
        written_keys.add(_scope_key(scope, heading))
        has_title = has_title or heading.level == 1

    addition = "\n".join(part for part in kept if part.strip())
    if not addition:
        return base
    return f"{base}\n{addition}" if base else addition


class TruncationRecoveryEngine:
    """Bounded continuation loop for one writer assignment."""

    def __init__(self, settings: GenerationSettings):
        self.settings = settings

    def missing(self, planned: Sequence[SectionHeading], text: str) -> List[SectionHeading]:
        return missing_headings(planned, extract_headings(text), self.settings.heading_similarity)

    async def recover(
        self,
        job: Job,
        text: str,
        signal: FinishSignal,
        planned: Sequence[SectionHeading] = (),
        *,
        audit: AuditTrail,
        assignment_index: Optional[int] = None,
        target_length: Optional[int] = None,
        is_last: bool = True,
    ) -> RecoveryOutcome:
        if signal is FinishSignal.COMPLETE:
            return RecoveryOutcome(text=text, state=RecoveryState.COMPLETE)

        missing = self.missing(planned, text)
        if looks_complete(text) and not missing:
            return RecoveryOutcome(text=text, state=RecoveryState.COMPLETE)

        state = RecoveryState.LENGTH_LIMITED
        attempts = 0
        while True:
            text = trim_to_last_sentence(text)
            missing = self.missing(planned, text)
            if attempts >= self.settings.continuation_attempts:
                state = RecoveryState.EXHAUSTED
                break

            attempts += 1
            remaining = max(0, (target_length or 0) - document_length(text))
            logger.info(
                "continuation_start job_id=%s assignment=%s attempt=%s missing=%s remaining=%s",
                job.job_id,
                assignment_index,
                attempts,
                len(missing),
                remaining,
            )
            prompt = build_continuation_prompt(
                job,
                tail(text, self.settings.context_window_chars),
                missing,
                remaining,
                is_last=is_last,
            )
            response = await audit.generate(
                "continuation",
                prompt,
                max_tokens=token_ceiling(
                    max(remaining, _MIN_CONTINUATION_CHARS),
                    chars_per_token=self.settings.chars_per_token,
                    margin=self.settings.token_margin,
                    floor=self.settings.token_floor,
                    ceiling=self.settings.token_ceiling,
                ),
                temperature=self.settings.writer_temperature,
                assignment_index=assignment_index,
            )
            text = merge_continuation(text, response.content, self.settings.heading_similarity, planned)
            missing = self.missing(planned, text)
            if response.signal is FinishSignal.COMPLETE and not missing:
                state = RecoveryState.COMPLETE
                break

        text = ensure_closed_block(text) if state is RecoveryState.COMPLETE else trim_to_last_sentence(text)
        if state is RecoveryState.EXHAUSTED:
            logger.warning(
                "continuation_exhausted job_id=%s assignment=%s missing=%s",
                job.job_id,
                assignment_index,
                [h.text for h in missing],
            )
        return RecoveryOutcome(text=text, state=state, attempts=attempts, missing=missing)
