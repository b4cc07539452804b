"""Core contracts and shared types for the generation pipeline."""

from .contracts import (
    FetchStatus,
    FinishSignal,
    GenerationAttempt,
    Job,
    JobContent,
    JobRecord,
    Language,
    Order,
    OrderStatus,
    PlanMode,
    Progress,
    ScrapedSourceRecord,
    SearchResult,
    SectionHeading,
    SelectedSourceRecord,
    SeoLink,
    SourceCandidate,
    StructurePlan,
    UserSourceFile,
    UserSources,
    WriterAssignment,
    parse_headings,
)

__all__ = [
    "FetchStatus",
    "FinishSignal",
    "GenerationAttempt",
    "Job",
    "JobContent",
    "JobRecord",
    "Language",
    "Order",
    "OrderStatus",
    "PlanMode",
    "Progress",
    "ScrapedSourceRecord",
    "SearchResult",
    "SectionHeading",
    "SelectedSourceRecord",
    "SeoLink",
    "SourceCandidate",
    "StructurePlan",
    "UserSourceFile",
    "UserSources",
    "WriterAssignment",
    "parse_headings",
]
