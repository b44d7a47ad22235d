"""
Study and StudyMap: per-subject aggregation of REDCap records.
"""

from typing import Iterable

from pydantic import BaseModel, Field

from multifactor_risk.core.errors import ConversionError, StudyMismatchError
from multifactor_risk.observability import metrics
from multifactor_risk.observability.logger import get_logger
from .assessment import AssessmentResult, sort_results_by_as_of
from .record import Record

logger = get_logger(__name__)


class Study(BaseModel):
    """
    All records for a single study participant (patient).

    The first record added sets the study ID; every later record must
    carry the same normalized ID. Studies are rebuilt from REDCap each
    refresh cycle and never persisted.

    Attributes:
        id: Normalized study ID ("" until the first record arrives)
        records: Records in insertion order
    """

    id: str = ""
    records: list[Record] = Field(default_factory=list)

    def add_record(self, record: Record) -> None:
        """
        Append a record, checking that its study ID matches.

        Raises:
            StudyMismatchError: If the study already has a different ID.
                The study is left unchanged.
        """
        if self.id and self.id != record.study_id:
            raise StudyMismatchError(record.study_id, self.id)

        if not self.id:
            self.id = record.study_id
        self.records.append(record)

    def to_assessment_results(self, patient_url: str) -> list[AssessmentResult]:
        """
        Convert the records to AssessmentResults sorted by as_of.

        Records with incomplete or malformed risk factors are skipped, so
        the result may be shorter than the record list. Partial surveys
        are normal in REDCap and are not treated as errors.
        """
        results = []
        for record in self.records:
            try:
                results.append(record.to_assessment_result(patient_url))
            except ConversionError as e:
                logger.debug(
                    f"Skipping record for study {self.id}: {e}",
                    extra={"study_id": self.id, "event_name": record.event_name},
                )
                metrics.record_dropped_record(type(e).__name__)

        return sort_results_by_as_of(results)


class StudyMap(dict[str, Study]):
    """Studies indexed by study ID, built fresh from each REDCap export."""

    def add_record(self, record: Record) -> None:
        """Add a record to its study, creating the study on first sight."""
        study = self.get(record.study_id)
        if study is None:
            study = Study()
            self[record.study_id] = study
        study.add_record(record)

    def add_records(self, records: Iterable[Record]) -> None:
        """
        Add records in order, stopping at the first failure.

        Studies touched by records before the failing one keep those
        records.
        """
        for record in records:
            self.add_record(record)
