"""
AssessmentResult model: a date-stamped severity score plus its pie (ephemeral).
"""

from datetime import datetime

from pydantic import BaseModel

from .pie import Pie


class AssessmentResult(BaseModel):
    """
    Outcome of converting one complete record.

    Attributes:
        as_of: Risk factor date at local midnight (timezone-aware)
        score: Highest slice value in the pie (1-4)
        pie: The pie backing this assessment
    """

    as_of: datetime
    score: int
    pie: Pie


def sort_results_by_as_of(results: list[AssessmentResult]) -> list[AssessmentResult]:
    """Return results ordered by as_of; equal dates keep their input order."""
    return sorted(results, key=lambda result: result.as_of)
