"""
Generation Module
Source acquisition, structure planning, segmented synthesis, truncation
recovery and post-generation validation, plus the per-job pipeline.
"""
from .audit import AuditTrail
from .sources import AcquisitionResult, SourceAcquisitionEngine
from .planning import StructurePlanningEngine
from .recovery import RecoveryOutcome, RecoveryState, TruncationRecoveryEngine
from .synthesis import SegmentedSynthesisEngine, SynthesisResult
from .validation import PostGenerationValidator, ValidationResult
from .pipeline import JobPipeline

__all__ = [
    "AuditTrail",
    "AcquisitionResult",
    "SourceAcquisitionEngine",
    "StructurePlanningEngine",
    "RecoveryOutcome",
    "RecoveryState",
    "TruncationRecoveryEngine",
    "SegmentedSynthesisEngine",
    "SynthesisResult",
    "PostGenerationValidator",
    "ValidationResult",
    "JobPipeline",
]
