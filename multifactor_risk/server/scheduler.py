"""
Cron-triggered refreshes using APScheduler.
"""

import sys

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from multifactor_risk.core.errors import ConfigError, RiskServiceError
from multifactor_risk.observability.logger import get_logger
from multifactor_risk.sync.refresh import RefreshOrchestrator, log_result_summary
from multifactor_risk.utils.validation import ValidationError, validate_cron_spec

logger = get_logger(__name__)

REFRESH_JOB_ID = "refresh-risk-assessments"

# Firings waiting on the refresh lock count as running instances.
MAX_CONCURRENT_FIRINGS = sys.maxsize


def cron_trigger_from_spec(spec: str) -> CronTrigger:
    """
    Build a CronTrigger from "second minute hour day month day_of_week".

    Raises:
        ConfigError: If the cron expression is malformed or a field is out of range
    """
    try:
        fields = validate_cron_spec(spec)
        return CronTrigger(**fields)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Can't set up cron job for refreshing risk assessments. Specified spec: {spec} ({e})") from e


def run_scheduled_refresh(orchestrator: RefreshOrchestrator) -> None:
    """Job body: a failed cycle is logged, never raised into the scheduler."""
    try:
        results = orchestrator.refresh(trigger="cron")
    except RiskServiceError as e:
        logger.error(f"Error refreshing risk assessments: {e}")
        return
    log_result_summary(results)


def schedule_refresh(
    scheduler: BackgroundScheduler, spec: str, orchestrator: RefreshOrchestrator
) -> None:
    """
    Register the refresh job on scheduler.

    Every firing runs. A firing that arrives while another cycle holds the
    refresh lock waits for it on an executor thread instead of being skipped.
    """
    scheduler.add_job(
        run_scheduled_refresh,
        trigger=cron_trigger_from_spec(spec),
        args=[orchestrator],
        id=REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=MAX_CONCURRENT_FIRINGS,
        coalesce=False,
        misfire_grace_time=None,
    )
    logger.info(f"Scheduled risk assessment refresh with cron spec '{spec}'")
