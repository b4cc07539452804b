"""Canonical data contracts shared by the generation stages and the job store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_HEADING_RE = re.compile(r"<h([1-3])\b[^>]*>(.*?)</h\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


def parse_headings(html: str) -> List["SectionHeading"]:
    """Ordered h1-h3 headings found in an HTML fragment."""
    import html as html_lib

    headings: List[SectionHeading] = []
    for match in _HEADING_RE.finditer(str(html or "")):
        text = html_lib.unescape(_TAG_RE.sub(" ", match.group(2)))
        text = re.sub(r"\s+", " ", text).strip()
        if text:
            headings.append(SectionHeading(level=int(match.group(1)), text=text))
    return headings


class Language(str, Enum):
    """Supported output languages."""

    PL = "pl"
    EN = "en"
    DE = "de"
    ES = "es"
    FR = "fr"
    IT = "it"
    UK = "uk"
    RU = "ru"

    @property
    def display_name(self) -> str:
        return _LANGUAGE_NAMES[self]


_LANGUAGE_NAMES = {
    Language.PL: "Polish",
    Language.EN: "English",
    Language.DE: "German",
    Language.ES: "Spanish",
    Language.FR: "French",
    Language.IT: "Italian",
    Language.UK: "Ukrainian",
    Language.RU: "Russian",
}


class Progress(str, Enum):
    """Coarse job progress marker read by external pollers."""

    QUERY = "query"
    SEARCH = "search"
    SCRAPING_ALL = "scraping-all"
    SELECTING = "selecting"
    WRITING = "writing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (Progress.COMPLETED, Progress.ERROR)

    @classmethod
    def can_advance(cls, current: Optional["Progress"], new: "Progress") -> bool:
        """Monotonic forward moves; ``error`` from any non-terminal state."""
        if current is None:
            return True
        if current.is_terminal:
            return False
        if new is cls.ERROR:
            return True
        return _PROGRESS_ORDER.index(new) >= _PROGRESS_ORDER.index(current)


_PROGRESS_ORDER = [
    Progress.QUERY,
    Progress.SEARCH,
    Progress.SCRAPING_ALL,
    Progress.SELECTING,
    Progress.WRITING,
    Progress.COMPLETED,
]


class FetchStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class FinishSignal(str, Enum):
    """Terminal signal of one model call."""

    COMPLETE = "complete"
    LENGTH_LIMITED = "length-limited"


class PlanMode(str, Enum):
    IMPROVISED = "improvised"
    SINGLE = "single"
    MULTI = "multi"


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SeoLink(BaseModel):
    """Required link with its exact anchor text."""

    url: str
    anchor: str

    @field_validator("url", "anchor", mode="before")
    @classmethod
    def _non_empty_text(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text


class UserSourceFile(BaseModel):
    url: str
    name: str = ""


class UserSources(BaseModel):
    """Reference material supplied with the order."""

    urls: List[str] = Field(default_factory=list)
    files: List[UserSourceFile] = Field(default_factory=list)

    @field_validator("urls", mode="before")
    @classmethod
    def _clean_urls(cls, value: Any) -> List[str]:
        return [str(item).strip() for item in list(value or []) if str(item or "").strip()]

    @property
    def is_empty(self) -> bool:
        return not self.urls and not self.files


class Job(BaseModel):
    """One document to generate."""

    job_id: str
    order_id: str = ""
    topic: str
    length: int = Field(ge=2000)
    language: Language = Language.EN
    text_type: str = "article"
    custom_type: Optional[str] = None
    guidelines: str = ""
    seo_keywords: List[str] = Field(default_factory=list)
    seo_links: List[SeoLink] = Field(default_factory=list)
    user_sources: Optional[UserSources] = None

    @field_validator("job_id", "topic", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text

    @field_validator("custom_type", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        text = str(value or "").strip()
        return text or None

    @field_validator("seo_keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, value: Any) -> List[str]:
        return [str(item).strip() for item in list(value or []) if str(item or "").strip()]

    @property
    def kind_label(self) -> str:
        return self.custom_type or self.text_type

    @property
    def include_intro(self) -> bool:
        return self.length >= 5000

    @property
    def has_seo(self) -> bool:
        return bool(self.seo_keywords or self.seo_links)


class Order(BaseModel):
    """Parent order; its jobs run one after another."""

    order_id: str
    order_number: str = ""
    user_email: Optional[str] = None
    jobs: List[Job] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING


class SearchResult(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""


class SourceCandidate(BaseModel):
    """One fetched unit of reference material. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    url: str
    text: str = ""
    length: int = 0
    original_length: int = 0
    status: FetchStatus
    is_user_source: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is FetchStatus.SUCCESS


class SectionHeading(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1, le=3)
    text: str


class WriterAssignment(BaseModel):
    """One writer's slice of the skeleton plus its length target."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    sections: str
    structure: str = ""
    target_length: int = Field(ge=1)

    @property
    def headings(self) -> List[SectionHeading]:
        return parse_headings(self.structure)


class StructurePlan(BaseModel):
    """Section skeleton for a job. Fixed reference once created."""

    model_config = ConfigDict(frozen=True)

    mode: PlanMode
    full_structure: str = ""
    assignments: List[WriterAssignment]
    fallback_used: bool = False

    @property
    def headings(self) -> List[SectionHeading]:
        return parse_headings(self.full_structure)

    @property
    def writer_count(self) -> int:
        return len(self.assignments)

    def is_partition(self) -> bool:
        """Every skeleton heading appears in exactly one assignment."""
        planned = _heading_keys(self.headings)
        # slices are read in order so an h3 opening a slice keeps its h2
        assigned = _heading_keys([h for assignment in self.assignments for h in assignment.headings])
        if len(set(assigned)) != len(assigned):
            return False
        return sorted(planned) == sorted(assigned)


def _heading_keys(headings: List[SectionHeading]) -> List[str]:
    """``level:text`` keys; an h3 is qualified by the h2 it sits under."""
    keys = []
    parent = ""
    for heading in headings:
        text = heading.text.strip().lower()
        if heading.level <= 2:
            parent = text if heading.level == 2 else ""
            keys.append(f"{heading.level}:{text}")
        else:
            keys.append(f"{heading.level}:{parent}/{text}")
    return keys


class GenerationAttempt(BaseModel):
    """One generative call kept for audit. Append-only."""

    job_id: str
    stage: str
    assignment_index: Optional[int] = None
    prompt: str
    output: str
    signal: FinishSignal = FinishSignal.COMPLETE
    usage: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class ScrapedSourceRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    length: int
    status: FetchStatus
    is_user_source: bool = Field(default=False, alias="isUserSource")

    @classmethod
    def from_candidate(cls, candidate: SourceCandidate) -> "ScrapedSourceRecord":
        return cls(
            url=candidate.url,
            length=candidate.length,
            status=candidate.status,
            is_user_source=candidate.is_user_source,
        )


class SelectedSourceRecord(ScrapedSourceRecord):
    text: str = ""


class JobContent(BaseModel):
    """Persisted job document. Consumers read only the generated fields."""

    model_config = ConfigDict(populate_by_name=True)

    search_query: str = Field(default="", alias="searchQuery")
    all_discovered_results: List[SearchResult] = Field(default_factory=list, alias="allDiscoveredResults")
    scraped_sources: List[ScrapedSourceRecord] = Field(default_factory=list, alias="scrapedSources")
    selected_sources: List[SelectedSourceRecord] = Field(default_factory=list, alias="selectedSources")
    selection_rationale: str = Field(default="", alias="selectionRationale")
    discovery_skipped: bool = Field(default=False, alias="discoverySkipped")
    structure_plan: Optional[StructurePlan] = Field(default=None, alias="structurePlan")
    generated_content: str = Field(default="", alias="generatedContent")
    generated_at: Optional[datetime] = Field(default=None, alias="generatedAt")
    no_sources_available: bool = Field(default=False, alias="noSourcesAvailable")
    validation: Dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class JobRecord(BaseModel):
    """Store-side state of one job."""

    job: Job
    progress: Optional[Progress] = None
    content: JobContent = Field(default_factory=JobContent)
    attempts: List[GenerationAttempt] = Field(default_factory=list)
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def is_terminal(self) -> bool:
        return self.progress is not None and self.progress.is_terminal
