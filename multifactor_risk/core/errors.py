"""
Exception hierarchy for the risk assessment synchronization pipeline.

Errors fall into three groups:
- cycle-fatal (FetchError, StudyMismatchError): abort a whole refresh cycle
- study-local (IdentityResolutionError subclasses, ReconciliationError):
  recorded on the study's SyncResult, siblings keep going
- record-local (ConversionError subclasses): the record is skipped
"""


class RiskServiceError(Exception):
    """Base class for all risk service errors."""


class ConfigError(RiskServiceError, ValueError):
    """Raised when service configuration is missing or invalid."""


# =======================
# CYCLE-FATAL
# =======================

class FetchError(RiskServiceError):
    """Raised when the REDCap record export cannot be fetched or decoded."""

    def __init__(self, endpoint: str, cause: Exception | str):
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"Couldn't fetch REDCap records from {endpoint}: {cause}")


class StudyMismatchError(RiskServiceError):
    """Raised when a record is added to a study with a different study ID."""

    def __init__(self, record_study_id: str, study_id: str):
        self.record_study_id = record_study_id
        self.study_id = study_id
        super().__init__(
            f"Record with study ID {record_study_id} cannot be added to study with ID {study_id}"
        )


# =======================
# RECORD-LOCAL
# =======================

class ConversionError(RiskServiceError):
    """Raised when a single record cannot be converted to a risk assessment."""


class IncompleteRecordError(ConversionError):
    def __init__(self, study_id: str = ""):
        self.study_id = study_id
        super().__init__("Cannot create a pie with incomplete risk factors")


class InvalidScoreError(ConversionError):
    def __init__(self, field_name: str, raw_value: str):
        self.field_name = field_name
        self.raw_value = raw_value
        super().__init__(f"Invalid {field_name}: {raw_value}")


class DateParseError(ConversionError):
    def __init__(self, raw_value: str):
        self.raw_value = raw_value
        super().__init__(f"Invalid risk factor date: {raw_value!r} (expected YYYY-MM-DD)")


# =======================
# STUDY-LOCAL
# =======================

class IdentityResolutionError(RiskServiceError):
    """Raised when a study ID cannot be mapped to exactly one FHIR patient."""

    def __init__(self, study_id: str, message: str):
        self.study_id = study_id
        super().__init__(message)


class SubjectNotFoundError(IdentityResolutionError):
    def __init__(self, study_id: str):
        super().__init__(study_id, f"Couldn't find patient with Study ID {study_id}")


class AmbiguousSubjectError(IdentityResolutionError):
    def __init__(self, study_id: str, count: int):
        self.count = count
        super().__init__(study_id, f"Found too many patients ({count}) with Study ID {study_id}")


class UpstreamUnavailableError(IdentityResolutionError):
    def __init__(self, study_id: str, cause: Exception | str):
        self.cause = cause
        super().__init__(
            study_id,
            f"Couldn't query FHIR server for patient with Study ID: {study_id}.  Error: {cause}",
        )


class ReconciliationError(RiskServiceError):
    """Raised when pies or risk assessments cannot be stored for a patient."""

    def __init__(self, patient_id: str, cause: Exception | str):
        self.patient_id = patient_id
        self.cause = cause
        super().__init__(f"Couldn't update risk assessments for patient {patient_id}: {cause}")
