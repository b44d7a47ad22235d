"""
Replace-on-refresh reconciliation of risk assessments on the FHIR server.

For one patient, the service's previous risk assessments are deleted and
the freshly computed ones are created in a single FHIR transaction. The
chronologically last assessment is tagged MOST_RECENT.
"""

from typing import Any, Protocol, Sequence
from urllib.parse import urlencode

import psycopg
import requests

from multifactor_risk.clients.fhir_client import FHIRClient
from multifactor_risk.core.config import RiskServiceConfig
from multifactor_risk.core.errors import ReconciliationError
from multifactor_risk.core.models import AssessmentResult, Pie
from multifactor_risk.observability.logger import get_logger

logger = get_logger(__name__)

MOST_RECENT_TAG = {"system": "http://interventionengine.org/tags/", "code": "MOST_RECENT"}


class PieRepository(Protocol):
    def save_pies(self, pies: Sequence[Pie]) -> int: ...

    def delete_pies_except(self, patient_url: str, keep_ids: Sequence[str]) -> int: ...


def build_risk_assessment_bundle(
    patient_id: str,
    results: Sequence[AssessmentResult],
    basis_pie_url: str,
    config: RiskServiceConfig,
) -> dict[str, Any]:
    """
    Build the transaction bundle that replaces a patient's risk assessments.

    The first entry conditionally deletes every RiskAssessment for the
    patient with this service's method; the rest create one assessment
    per result, in order. Only the last one gets the MOST_RECENT tag.

    Args:
        patient_id: FHIR Patient id
        results: Results sorted ascending by as_of
        basis_pie_url: URL prefix under which pies are served
        config: Risk service labelling
    """
    delete_query = urlencode({"patient": patient_id, "method": config.method_token})
    entries: list[dict[str, Any]] = [
        {"request": {"method": "DELETE", "url": f"RiskAssessment?{delete_query}"}}
    ]

    for i, result in enumerate(results):
        assessment: dict[str, Any] = {
            "resourceType": "RiskAssessment",
            "subject": {"reference": f"Patient/{patient_id}"},
            "date": result.as_of.isoformat(),
            "method": config.method.to_fhir(),
            "prediction": [
                {
                    "outcome": config.predicted_outcome.to_fhir(),
                    "probabilityDecimal": float(result.score),
                }
            ],
            "basis": [{"reference": f"{basis_pie_url}/{result.pie.id}"}],
        }
        if i == len(results) - 1:
            assessment["meta"] = {"tag": [dict(MOST_RECENT_TAG)]}

        entries.append({
            "resource": assessment,
            "request": {"method": "POST", "url": "RiskAssessment"},
        })

    return {"resourceType": "Bundle", "type": "transaction", "entry": entries}


class RiskAssessmentReconciler:
    """
    Stores pies and replaces a patient's risk assessments on the FHIR server.

    Running it twice with the same results leaves the same stored state:
    one assessment per result, the last one tagged MOST_RECENT, and one
    pie per assessment.
    """

    def __init__(
        self,
        fhir_client: FHIRClient,
        pie_store: PieRepository,
        basis_pie_url: str,
        config: RiskServiceConfig,
    ):
        self.fhir_client = fhir_client
        self.pie_store = pie_store
        self.basis_pie_url = basis_pie_url.rstrip("/")
        self.config = config

    def update_risk_assessments_and_pies(
        self, patient_id: str, results: Sequence[AssessmentResult]
    ) -> None:
        """
        Replace the patient's assessments with results.

        Pies are stored before the bundle is posted so every basis
        reference resolves; pies from earlier cycles are pruned only
        after the FHIR server accepts the bundle.

        Raises:
            ReconciliationError: If storing pies or posting the bundle fails
        """
        pies = [result.pie for result in results]
        patient_url = self.fhir_client.patient_url(patient_id)

        try:
            self.pie_store.save_pies(pies)
            bundle = build_risk_assessment_bundle(patient_id, results, self.basis_pie_url, self.config)
            self.fhir_client.post_transaction(bundle)
            self.pie_store.delete_pies_except(patient_url, [pie.id for pie in pies])
        except (requests.RequestException, psycopg.Error, ValueError) as e:
            raise ReconciliationError(patient_id, e) from e

        logger.debug(
            f"Posted {len(results)} risk assessments for patient {patient_id}",
            extra={"patient_id": patient_id, "assessment_count": len(results)},
        )
