"""
Refresh orchestration: REDCap → studies → FHIR risk assessments.

Coordinates the flow: fetch → group → per study (resolve → convert →
reconcile) → aggregate. Only fetch and grouping failures abort a cycle;
anything that goes wrong for a single study is recorded on that study's
SyncResult.
"""

import threading
from typing import Protocol, Sequence

from multifactor_risk.clients.fhir_client import FHIRClient
from multifactor_risk.clients.redcap_client import REDCapClient
from multifactor_risk.core.errors import RiskServiceError
from multifactor_risk.core.models import AssessmentResult, Study, StudyMap, SyncResult
from multifactor_risk.observability import metrics
from multifactor_risk.observability.logger import get_logger, log_operation

logger = get_logger(__name__)

# Shared by every orchestrator in the process so HTTP and cron triggers
# never run two cycles at once.
REFRESH_LOCK = threading.Lock()


class Reconciler(Protocol):
    def update_risk_assessments_and_pies(
        self, patient_id: str, results: Sequence[AssessmentResult]
    ) -> None: ...


class RefreshOrchestrator:
    """
    Runs refresh cycles one at a time.

    A caller that triggers a refresh while another cycle is running waits
    for it to finish and then runs its own cycle; nothing is dropped.
    """

    def __init__(
        self,
        redcap_client: REDCapClient,
        fhir_client: FHIRClient,
        reconciler: Reconciler,
        lock: "threading.Lock | None" = None,
    ):
        self.redcap_client = redcap_client
        self.fhir_client = fhir_client
        self.reconciler = reconciler
        self.lock = lock or REFRESH_LOCK

    def refresh(self, trigger: str = "manual") -> list[SyncResult]:
        """
        Pull risk factors from REDCap and post them to the FHIR server.

        Args:
            trigger: Label for logs and metrics (http, cron, cli, ...)

        Returns:
            One SyncResult per study in the REDCap export

        Raises:
            FetchError: If the REDCap export fails
            StudyMismatchError: If the export can't be grouped into studies
        """
        with self.lock:
            metrics.refresh_in_progress.set(1)
            try:
                with log_operation("Refreshing risk assessments", logger=logger, trigger=trigger), \
                        metrics.track_duration(metrics.refresh_duration_seconds, trigger=trigger):
                    studies = self.redcap_client.get_studies()
                    results = self.post_risk_assessments(studies)
            except Exception:
                metrics.record_refresh_cycle(trigger, success=False)
                raise
            finally:
                metrics.refresh_in_progress.set(0)

        metrics.record_refresh_cycle(trigger, success=True)
        metrics.record_sync_results(results)
        return results

    def post_risk_assessments(self, studies: StudyMap) -> list[SyncResult]:
        """
        Post every study's risk assessments, isolating failures per study.

        Returns:
            One SyncResult per study, in the map's iteration order
        """
        results = []
        for study in studies.values():
            results.append(self.sync_study(study))
        return results

    def sync_study(self, study: Study) -> SyncResult:
        """Resolve, convert and reconcile a single study."""
        result = SyncResult(study_id=study.id)

        try:
            patient_id = self.fhir_client.find_patient_id(study.id)
            result.fhir_patient_id = patient_id

            assessments = study.to_assessment_results(self.fhir_client.patient_url(patient_id))
            self.reconciler.update_risk_assessments_and_pies(patient_id, assessments)
            result.risk_assessment_count = len(assessments)
        except RiskServiceError as e:
            logger.warning(
                f"Couldn't synchronize study {study.id}: {e}",
                extra={"study_id": study.id, "error_type": type(e).__name__},
            )
            result.error = e
        except Exception as e:
            logger.exception(
                f"Unexpected error synchronizing study {study.id}",
                extra={"study_id": study.id, "error_type": type(e).__name__},
            )
            result.error = e

        return result


def log_result_summary(results: Sequence[SyncResult]) -> None:
    """Log the number of patients, errors and risk assessments in a cycle."""
    num_errors = sum(1 for result in results if result.error is not None)
    num_assessments = sum(result.risk_assessment_count for result in results)
    logger.info(
        f"Refreshed risk assessments for {len(results)} patients: "
        f"{num_errors} errors, {num_assessments} risk assessments.",
        extra={
            "patient_count": len(results),
            "error_count": num_errors,
            "assessment_count": num_assessments,
        },
    )
