"""
REDCap API client: exports the risk factor records of the study project.
"""

import requests
from pydantic import ValidationError

from multifactor_risk.core.errors import FetchError
from multifactor_risk.core.models import Record, StudyMap
from multifactor_risk.observability.logger import get_logger

logger = get_logger(__name__)

RISK_FACTOR_FIELDS = (
    "study_id, redcap_event_name, rf_date, rf_cmc_risk_cat, rf_func_risk_cat, "
    "rf_sb_risk_cat, rf_util_risk_cat, rf_risk_predicted"
)


class REDCapClient:
    """
    Fetches flat risk factor records from a REDCap API endpoint.

    Args:
        endpoint: REDCap API URL (a trailing slash is added if missing)
        token: REDCap API token for the project
        timeout: Request timeout in seconds
        session: Optional requests session (for connection reuse or tests)
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        if not endpoint.endswith("/"):
            endpoint += "/"
        self.endpoint = endpoint
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def export_form(self) -> dict[str, str]:
        return {
            "token": self.token,
            "content": "record",
            "format": "json",
            "returnFormat": "json",
            "type": "flat",
            "fields": RISK_FACTOR_FIELDS,
        }

    def fetch_records(self) -> list[Record]:
        """
        Export all records from REDCap.

        Raises:
            FetchError: If the request fails, REDCap answers with an error
                status, or the body is not a JSON array of records
        """
        try:
            response = self.session.post(self.endpoint, data=self.export_form(), timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise FetchError(self.endpoint, e) from e

        if not isinstance(payload, list):
            # REDCap reports API errors as {"error": "..."}
            detail = payload.get("error", payload) if isinstance(payload, dict) else payload
            raise FetchError(self.endpoint, f"unexpected response: {detail}")

        try:
            records = [Record.model_validate(item) for item in payload]
        except ValidationError as e:
            raise FetchError(self.endpoint, e) from e

        logger.info(f"Fetched {len(records)} records from REDCap", extra={"record_count": len(records)})
        return records

    def get_studies(self) -> StudyMap:
        """
        Fetch all records and group them by study ID.

        Raises:
            FetchError: If the export fails
            StudyMismatchError: If records can't be grouped consistently
        """
        studies = StudyMap()
        studies.add_records(self.fetch_records())
        return studies
