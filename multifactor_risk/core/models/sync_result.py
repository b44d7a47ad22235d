"""
SyncResult model representing the outcome of synchronizing one study (ephemeral).
"""

from typing import Any

from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    """
    Result (successful or not) of posting one study's risk assessments.

    Exactly one SyncResult is produced per study per refresh cycle.

    Attributes:
        study_id: Normalized REDCap study ID
        fhir_patient_id: Patient ID on the FHIR server ("" if unresolved)
        risk_assessment_count: Number of risk assessments posted
        error: Failure for this study, None on success
    """

    study_id: str
    fhir_patient_id: str = ""
    risk_assessment_count: int = Field(0, ge=0)
    error: Exception | None = None

    class Config:
        arbitrary_types_allowed = True

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_json_dict(self) -> dict[str, Any]:
        """
        Wire representation; the error is flattened to its message.

        Empty IDs and a missing error are omitted, the count is always
        present.
        """
        data: dict[str, Any] = {}
        if self.study_id:
            data["studyID"] = self.study_id
        if self.fhir_patient_id:
            data["fhirPatientID"] = self.fhir_patient_id
        data["riskAssessmentCount"] = self.risk_assessment_count
        if self.error is not None:
            data["error"] = str(self.error)
        return data
