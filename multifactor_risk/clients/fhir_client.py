"""
FHIR server client: patient lookup by study ID and transaction posting.
"""

from typing import Any, Iterator

import requests

from multifactor_risk.core.errors import (
    AmbiguousSubjectError,
    SubjectNotFoundError,
    UpstreamUnavailableError,
)
from multifactor_risk.observability.logger import get_logger

logger = get_logger(__name__)

FHIR_JSON = "application/json"


class FHIRClient:
    """
    Minimal FHIR REST client built on requests.

    Args:
        base_url: FHIR server base URL (no trailing slash)
        timeout: Request timeout in seconds
        session: Optional requests session (for connection reuse or tests)
    """

    def __init__(self, base_url: str, timeout: float = 30.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def patient_url(self, patient_id: str) -> str:
        return f"{self.base_url}/Patient/{patient_id}"

    def search(self, resource_type: str, params: dict[str, str]) -> Iterator[dict[str, Any]]:
        """
        Run a search and yield every matching resource across all pages.

        Follows the bundle's "next" link until there is none. Entries with
        search mode "include" or "outcome" are skipped.

        Raises:
            requests.RequestException: On transport errors or non-200 status
            ValueError: If a page is not a JSON bundle
        """
        url: str | None = f"{self.base_url}/{resource_type}"
        query: dict[str, str] | None = params

        while url:
            response = self.session.get(
                url, params=query, headers={"Accept": FHIR_JSON}, timeout=self.timeout
            )
            response.raise_for_status()
            bundle = response.json()
            if not isinstance(bundle, dict) or bundle.get("resourceType") != "Bundle":
                raise ValueError(f"expected a Bundle from {url}")

            for entry in bundle.get("entry") or []:
                mode = (entry.get("search") or {}).get("mode", "match")
                resource = entry.get("resource") or {}
                if mode == "match" and resource.get("resourceType") == resource_type:
                    yield resource

            url = None
            query = None
            for link in bundle.get("link") or []:
                if link.get("relation") == "next" and link.get("url"):
                    url = link["url"]

    def find_patient_id(self, study_id: str) -> str:
        """
        Resolve a REDCap study ID to a FHIR Patient id.

        The study ID is matched against Patient.identifier (often the MRN).

        Raises:
            SubjectNotFoundError: No patient has the identifier
            AmbiguousSubjectError: More than one patient has it
            UpstreamUnavailableError: The search failed or returned garbage
        """
        try:
            patients = list(self.search("Patient", {"identifier": study_id}))
        except (requests.RequestException, ValueError) as e:
            raise UpstreamUnavailableError(study_id, e) from e

        if not patients:
            raise SubjectNotFoundError(study_id)
        if len(patients) > 1:
            raise AmbiguousSubjectError(study_id, len(patients))

        patient_id = patients[0].get("id")
        if not patient_id:
            raise UpstreamUnavailableError(study_id, "matching Patient has no id")

        logger.debug(f"Resolved study {study_id} to patient {patient_id}")
        return patient_id

    def post_transaction(self, bundle: dict[str, Any]) -> dict[str, Any]:
        """
        POST a transaction bundle to the server base URL.

        Returns:
            The transaction-response bundle (empty dict if the server sent no body)

        Raises:
            requests.RequestException: On transport errors or non-2xx status
        """
        response = self.session.post(
            self.base_url,
            json=bundle,
            headers={"Accept": FHIR_JSON, "Content-Type": FHIR_JSON},
            timeout=self.timeout,
        )
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()
