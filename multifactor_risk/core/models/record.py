"""
Record model representing one REDCap risk factor survey submission (ephemeral).
"""

import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from multifactor_risk.core.errors import DateParseError, IncompleteRecordError, InvalidScoreError
from .assessment import AssessmentResult
from .pie import SLICE_MAX_VALUE, SLICE_WEIGHT, Pie, Slice

RISK_FACTOR_DATE_FORMAT = "%Y-%m-%d"

# Pie slice label -> Record attribute, in slice order. Perceived risk is
# collected by the survey but is not part of the pie.
PIE_CATEGORIES = (
    ("Clinical Risk", "clinical_risk"),
    ("Functional and Environmental Risk", "functional_risk"),
    ("Psychosocial and Mental Health Risk", "psychosocial_risk"),
    ("Utilization Risk", "utilization_risk"),
)

_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")
_DATE_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def normalize_study_id(value: Any) -> str:
    """
    Render a study ID (string or JSON number) in its canonical string form.

    >>> normalize_study_id(12)
    '12'
    >>> normalize_study_id(12.0)
    '12'
    >>> normalize_study_id("a")
    'a'
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


class Record(BaseModel):
    """
    Key fields of a REDCap record in the risk stratification project.

    Field aliases match the REDCap flat JSON export. The study ID is
    normalized to a string on construction; scores stay string-encoded
    because an empty string means "not yet collected".

    Attributes:
        study_id: Study identifier (often the MRN)
        event_name: REDCap event label, informational only
        risk_factor_date: Date of the risk factor form (YYYY-MM-DD)
        clinical_risk: Clinical risk category score
        functional_risk: Functional and environmental risk category score
        psychosocial_risk: Psychosocial and mental health risk category score
        utilization_risk: Utilization risk category score
        perceived_risk: Overall perceived risk, collected but not charted
    """

    study_id: str = Field("", alias="study_id")
    event_name: str = Field("", alias="redcap_event_name")
    risk_factor_date: str = Field("", alias="rf_date")
    clinical_risk: str = Field("", alias="rf_cmc_risk_cat")
    functional_risk: str = Field("", alias="rf_func_risk_cat")
    psychosocial_risk: str = Field("", alias="rf_sb_risk_cat")
    utilization_risk: str = Field("", alias="rf_util_risk_cat")
    perceived_risk: str = Field("", alias="rf_risk_predicted")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "study_id": "1",
                "redcap_event_name": "enrollment_arm_1",
                "rf_date": "2015-12-07",
                "rf_cmc_risk_cat": "3",
                "rf_func_risk_cat": "2",
                "rf_sb_risk_cat": "1",
                "rf_util_risk_cat": "3",
                "rf_risk_predicted": "3",
            }
        }

    @field_validator("study_id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        return normalize_study_id(v)

    @field_validator(
        "event_name",
        "risk_factor_date",
        "clinical_risk",
        "functional_risk",
        "psychosocial_risk",
        "utilization_risk",
        "perceived_risk",
        mode="before",
    )
    @classmethod
    def coerce_to_string(cls, v):
        """REDCap sends blanks as "" but some exports emit numbers or null."""
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return normalize_study_id(v)
        return v

    def is_complete(self) -> bool:
        """True when the date and all five risk scores have been filled in."""
        return all(
            value != ""
            for value in (
                self.risk_factor_date,
                self.clinical_risk,
                self.functional_risk,
                self.psychosocial_risk,
                self.utilization_risk,
                self.perceived_risk,
            )
        )

    def risk_factor_datetime(self) -> datetime:
        """
        Parse the risk factor date as local midnight.

        Raises:
            DateParseError: If the date is not a valid YYYY-MM-DD string
        """
        if not _DATE_PATTERN.fullmatch(self.risk_factor_date):
            raise DateParseError(self.risk_factor_date)
        try:
            parsed = datetime.strptime(self.risk_factor_date, RISK_FACTOR_DATE_FORMAT)
        except ValueError as e:
            raise DateParseError(self.risk_factor_date) from e
        return parsed.astimezone()

    def to_pie(self, patient_url: str) -> Pie:
        """
        Convert the record to a pie for the patient at patient_url.

        Raises:
            IncompleteRecordError: If any risk factor is missing
            InvalidScoreError: If a charted score is not an integer
        """
        if not self.is_complete():
            raise IncompleteRecordError(self.study_id)

        slices = [
            _new_slice(name, getattr(self, attribute))
            for name, attribute in PIE_CATEGORIES
        ]
        return Pie(patient=patient_url, slices=slices)

    def to_assessment_result(self, patient_url: str) -> AssessmentResult:
        """
        Convert the record to an AssessmentResult.

        The score is the highest slice value; the pie is built before
        the date is parsed so an incomplete record fails as incomplete.
        """
        pie = self.to_pie(patient_url)
        as_of = self.risk_factor_datetime()

        score = None
        for pie_slice in pie.slices:
            if score is None or score < pie_slice.value:
                score = pie_slice.value

        return AssessmentResult(as_of=as_of, score=score, pie=pie)


def _new_slice(name: str, score: str) -> Slice:
    if not _INTEGER_PATTERN.fullmatch(score):
        raise InvalidScoreError(name, score)
    return Slice(name=name, value=int(score), weight=SLICE_WEIGHT, max_value=SLICE_MAX_VALUE)
