"""
Post-generation validation of the assembled document.

Two checks run once per job: the ending (is the last sentence whole?) and the
required SEO links (is each URL linked?). Both degrade to reporting; neither
fails the job.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import GenerationSettings
from core import Job, SeoLink
from utils.exceptions import LLMError
from .audit import AuditTrail
from .prompts import (
    build_ending_check_prompt,
    build_link_repair_prompt,
    max_links_for_length,
    token_ceiling,
)
from .text_utils import (
    count_links,
    document_length,
    ensure_closed_block,
    link_in_heading,
    strip_code_fences,
    tail,
    trim_chars,
    trim_to_last_sentence,
)


logger = logging.getLogger(__name__)

_HREF_RE = re.compile(r"<a\s[^>]*href\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
_JSON_OBJECT_RE = re.compile(r"\{[^{}]*\}", re.DOTALL)
MAX_SHRINK_RATIO = 0.10


@dataclass
class EndingReport:
    checked: bool = False
    complete: bool = True
    trimmed_chars: int = 0
    note: str = ""


@dataclass
class LinkReport:
    required: List[str] = field(default_factory=list)
    missing_before: List[str] = field(default_factory=list)
    missing_after: List[str] = field(default_factory=list)
    repair_attempted: bool = False
    repair_accepted: bool = False
    rejection: Optional[str] = None

    @property
    def inserted(self) -> List[str]:
        return [url for url in self.missing_before if url not in self.missing_after]

    @property
    def complete(self) -> bool:
        return not self.missing_after


@dataclass
class ValidationResult:
    text: str
    ending: EndingReport
    links: LinkReport

    def to_dict(self) -> Dict[str, Any]:
        links = asdict(self.links)
        links["inserted"] = self.links.inserted
        links["complete"] = self.links.complete
        return {"ending": asdict(self.ending), "links": links}


def parse_ending_reply(reply: str, window: int) -> Tuple[bool, int]:
    """``(complete, trim_chars)`` from the ending-check reply; unreadable replies count as complete."""
    text = strip_code_fences(reply)
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return True, 0
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return True, 0
    if not isinstance(data, dict):
        return True, 0
    complete = data.get("complete", True)
    if isinstance(complete, str):
        complete = complete.strip().lower() not in ("false", "no", "0")
    try:
        trim = int(data.get("trim_chars", 0) or 0)
    except (TypeError, ValueError):
        trim = 0
    return bool(complete), max(0, min(trim, window))


def _link_counts(html: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for url in _HREF_RE.findall(html or ""):
        key = url.strip().rstrip("/")
        counts[key] = counts.get(key, 0) + 1
    return counts


class PostGenerationValidator:
    """Ending check and link repair over the finished document."""

    def __init__(self, settings: GenerationSettings):
        self.settings = settings

    @staticmethod
    def required_links(job: Job) -> List[SeoLink]:
        return list(job.seo_links[: max_links_for_length(job.length)])

    @staticmethod
    def missing_links(html: str, links: Sequence[SeoLink]) -> List[SeoLink]:
        return [link for link in links if count_links(html, link.url) == 0]

    async def validate(self, job: Job, html: str, audit: AuditTrail) -> ValidationResult:
        text, ending = await self.check_ending(job, html, audit)
        text, links = await self.check_links(job, text, audit)
        text = ensure_closed_block(text)
        logger.info(
            "validation_done job_id=%s ending_complete=%s trimmed=%s links_missing=%s chars=%s",
            job.job_id,
            ending.complete,
            ending.trimmed_chars,
            len(links.missing_after),
            document_length(text),
        )
        return ValidationResult(text=text, ending=ending, links=links)

    async def check_ending(self, job: Job, html: str, audit: AuditTrail) -> Tuple[str, EndingReport]:
        report = EndingReport()
        text = str(html or "").rstrip()
        if not text:
            report.note = "empty document"
            return text, report

        window = tail(text, self.settings.ending_window_chars)
        try:
            response = await audit.generate(
                "ending-check",
                build_ending_check_prompt(window),
                max_tokens=100,
                temperature=self.settings.utility_temperature,
            )
            report.checked = True
            complete, trim = parse_ending_reply(response.content, len(window))
        except LLMError as exc:
            logger.warning("ending_check_failed job_id=%s error=%s", job.job_id, exc)
            report.note = "ending check unavailable"
            complete, trim = True, 0

        report.complete = complete
        if not complete:
            before = len(text)
            text = trim_chars(text, trim) if trim > 0 else trim_to_last_sentence(text)
            report.trimmed_chars = max(0, before - len(text))
            logger.info("ending_trimmed job_id=%s trim_chars=%s", job.job_id, report.trimmed_chars)
        return ensure_closed_block(text), report

    async def check_links(self, job: Job, html: str, audit: AuditTrail) -> Tuple[str, LinkReport]:
        required = self.required_links(job)
        missing = self.missing_links(html, required)
        report = LinkReport(
            required=[link.url for link in required],
            missing_before=[link.url for link in missing],
            missing_after=[link.url for link in missing],
        )
        if not missing:
            return html, report

        report.repair_attempted = True
        try:
            response = await audit.generate(
                "link-repair",
                build_link_repair_prompt(job, html, missing),
                max_tokens=token_ceiling(
                    int(document_length(html) * 1.2) + 500,
                    chars_per_token=self.settings.chars_per_token,
                    margin=self.settings.token_margin,
                    floor=self.settings.token_floor,
                    ceiling=self.settings.token_ceiling,
                ),
                temperature=self.settings.utility_temperature,
            )
        except LLMError as exc:
            logger.warning("link_repair_failed job_id=%s error=%s", job.job_id, exc)
            report.rejection = "model error"
            return html, report

        candidate = strip_code_fences(response.content)
        rejection = self.review_repair(html, candidate, required)
        if rejection is None and response.length_limited:
            rejection = "repair output was truncated"
        if rejection is not None:
            logger.warning("link_repair_rejected job_id=%s reason=%s", job.job_id, rejection)
            report.rejection = rejection
            return html, report

        repaired = ensure_closed_block(candidate)
        report.repair_accepted = True
        report.missing_after = [link.url for link in self.missing_links(repaired, required)]
        logger.info(
            "link_repair_applied job_id=%s inserted=%s still_missing=%s",
            job.job_id,
            len(report.inserted),
            len(report.missing_after),
        )
        return repaired, report

    @staticmethod
    def review_repair(original: str, candidate: str, required: Sequence[SeoLink]) -> Optional[str]:
        """Reason to reject a repaired document, or None when it is acceptable."""
        if not candidate.strip():
            return "empty repair"

        before, after = _link_counts(original), _link_counts(candidate)
        for url, count in before.items():
            if after.get(url, 0) < count:
                return f"removed link {url}"
        for link in required:
            key = link.url.strip().rstrip("/")
            if after.get(key, 0) > max(1, before.get(key, 0)):
                return f"duplicated link {link.url}"
            if before.get(key, 0) == 0 and link_in_heading(candidate, link.url):
                return f"link placed in heading {link.url}"

        original_length = document_length(original)
        if original_length and document_length(candidate) < original_length * (1 - MAX_SHRINK_RATIO):
            return "repair shrank the document"
        return None
