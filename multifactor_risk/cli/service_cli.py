"""
Command-line interface for the multi-factor risk service.

Usage:
    multifactor-risk serve --redcap <url> --token <token> [options]
    multifactor-risk refresh --redcap <url> --token <token> [options]
"""

import argparse
import json
import sys

from apscheduler.schedulers.background import BackgroundScheduler

from multifactor_risk.clients.fhir_client import FHIRClient
from multifactor_risk.clients.redcap_client import REDCapClient
from multifactor_risk.core.config import Settings, load_service_config, load_settings
from multifactor_risk.core.errors import RiskServiceError
from multifactor_risk.observability.logger import get_logger
from multifactor_risk.server.app import create_app
from multifactor_risk.server.scheduler import schedule_refresh
from multifactor_risk.store.connection import DatabaseConnectionPool
from multifactor_risk.store.pie_store import PieStore
from multifactor_risk.sync.reconcile import RiskAssessmentReconciler
from multifactor_risk.sync.refresh import RefreshOrchestrator, log_result_summary

logger = get_logger(__name__)


def build_orchestrator(settings: Settings, pie_store: PieStore) -> RefreshOrchestrator:
    """Wire the REDCap client, FHIR client and reconciler together."""
    fhir_client = FHIRClient(settings.fhir_url, timeout=settings.http_timeout)
    redcap_client = REDCapClient(settings.redcap_url, settings.redcap_token, timeout=settings.http_timeout)
    reconciler = RiskAssessmentReconciler(
        fhir_client=fhir_client,
        pie_store=pie_store,
        basis_pie_url=settings.basis_pie_url,
        config=load_service_config(settings.service_config_path),
    )
    return RefreshOrchestrator(redcap_client, fhir_client, reconciler)


def open_pie_store(settings: Settings) -> tuple[DatabaseConnectionPool, PieStore]:
    pool = DatabaseConnectionPool.from_settings(settings)
    pool.open()
    pie_store = PieStore(pool)
    pie_store.create_schema()
    return pool, pie_store


def serve_command(settings: Settings, args) -> None:
    """Run the HTTP app with the cron-scheduled refresh in the background."""
    pool, pie_store = open_pie_store(settings)
    scheduler = BackgroundScheduler()

    try:
        orchestrator = build_orchestrator(settings, pie_store)
        schedule_refresh(scheduler, settings.cron_spec, orchestrator)
        scheduler.start()

        if args.refresh_now:
            results = orchestrator.refresh(trigger="cli")
            log_result_summary(results)

        app = create_app(orchestrator, pie_store)
        logger.info(f"Serving risk service on {settings.http_address} (pies at {settings.basis_pie_url})")
        app.run(host=settings.listen_host, port=settings.listen_port, threaded=True)
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=False)
        pool.close()


def refresh_command(settings: Settings, args) -> None:
    """Run one refresh cycle and print the results as JSON."""
    pool, pie_store = open_pie_store(settings)
    try:
        orchestrator = build_orchestrator(settings, pie_store)
        results = orchestrator.refresh(trigger="cli")
        log_result_summary(results)
        json.dump([result.to_json_dict() for result in results], sys.stdout, indent=2)
        sys.stdout.write("\n")
    finally:
        pool.close()


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--fhir", dest="fhir_url",
                        help='FHIR API address (env: FHIR_URL, default: "http://localhost:3001")')
    parser.add_argument("--redcap", dest="redcap_url",
                        help='REDCap API address (required, env: REDCAP_URL, example: "http://redcapsrv:80")')
    parser.add_argument("--token", dest="redcap_token",
                        help="REDCap API token (required, env: REDCAP_TOKEN)")
    parser.add_argument("--http", dest="http_address",
                        help='HTTP service address to listen on (env: HTTP_HOST_AND_PORT, default: ":9000")')
    parser.add_argument("--http-timeout", dest="http_timeout", type=float,
                        help="Timeout in seconds for REDCap and FHIR requests (env: HTTP_TIMEOUT, default: 30)")
    parser.add_argument("--service-config", dest="service_config",
                        help="YAML file overriding the risk service configuration (env: RISK_SERVICE_CONFIG)")
    parser.add_argument("--db-host", dest="db_host", help="Pie store database host (env: DB_HOST)")
    parser.add_argument("--db-port", dest="db_port", type=int, help="Pie store database port (env: DB_PORT)")
    parser.add_argument("--db-name", dest="db_name", help="Pie store database name (env: DB_NAME)")
    parser.add_argument("--db-user", dest="db_user", help="Pie store database user (env: DB_USER)")
    parser.add_argument("--db-password", dest="db_password", help="Pie store database password (env: DB_PASSWORD)")
    parser.add_argument("--env-file", dest="env_file", help="Path to a .env file to load")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multifactor-risk",
        description="Synchronize REDCap risk factor surveys into FHIR risk assessments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve pies and refresh every night at 22:00
  multifactor-risk serve --redcap http://redcapsrv:80/api --token F65EBA22DCB728FEC5ADFAD42378CA40

  # Refresh once and print the results
  multifactor-risk refresh --redcap http://redcapsrv:80/api --token F65EBA22DCB728FEC5ADFAD42378CA40
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP service and refresh scheduler")
    add_common_arguments(serve_parser)
    serve_parser.add_argument("--cron", dest="cron_spec",
                              help='Cron expression (with seconds) for automatic refreshes '
                                   '(env: REDCAP_CRON, default: "0 0 22 * * *")')
    serve_parser.add_argument("--refresh-now", action="store_true",
                              help="Run a refresh cycle immediately on startup")

    refresh_parser = subparsers.add_parser("refresh", help="Run a single refresh cycle")
    add_common_arguments(refresh_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings(vars(args), env_file=args.env_file)
    except RiskServiceError as e:
        print(e, file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    try:
        if args.command == "serve":
            serve_command(settings, args)
        elif args.command == "refresh":
            refresh_command(settings, args)
    except RiskServiceError as e:
        logger.error(f"Error refreshing risk assessments: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
