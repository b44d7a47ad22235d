"""
Core data models for the multi-factor risk service.

All models use Pydantic for runtime validation and type safety.
"""

from .assessment import AssessmentResult, sort_results_by_as_of
from .pie import Pie, Slice
from .record import PIE_CATEGORIES, Record, normalize_study_id
from .study import Study, StudyMap
from .sync_result import SyncResult

__all__ = [
    "Record",
    "normalize_study_id",
    "PIE_CATEGORIES",
    "Study",
    "StudyMap",
    "Pie",
    "Slice",
    "AssessmentResult",
    "sort_results_by_as_of",
    "SyncResult",
]
