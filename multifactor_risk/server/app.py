"""
Flask application exposing pie lookup, refresh and metrics endpoints.
"""

from flask import Flask, Response, jsonify

from multifactor_risk.core.errors import RiskServiceError
from multifactor_risk.observability import metrics
from multifactor_risk.observability.logger import get_logger
from multifactor_risk.sync.refresh import RefreshOrchestrator, log_result_summary
from multifactor_risk.utils.validation import ValidationError, validate_pie_id

logger = get_logger(__name__)


def create_app(orchestrator: RefreshOrchestrator, pie_store) -> Flask:
    """
    Build the HTTP app.

    Args:
        orchestrator: Runs refresh cycles for POST /refresh
        pie_store: Anything with get_pie(pie_id) -> Pie | None
    """
    app = Flask(__name__)

    @app.route("/pies/<pie_id>", methods=["GET"])
    def get_pie(pie_id: str):
        try:
            pie_id = validate_pie_id(pie_id)
        except ValidationError:
            return Response(
                "Bad ID format for requested Pie. Should be 32 hexadecimal characters",
                status=400,
                mimetype="text/plain",
            )

        pie = pie_store.get_pie(pie_id)
        if pie is None:
            return Response(status=404)
        return jsonify(pie.to_json_dict()), 200

    @app.route("/refresh", methods=["POST"])
    def refresh():
        try:
            results = orchestrator.refresh(trigger="http")
        except RiskServiceError as e:
            logger.error(f"Error refreshing risk assessments: {e}")
            return jsonify({"error": str(e)}), 500

        log_result_summary(results)
        return jsonify([result.to_json_dict() for result in results]), 200

    @app.route("/metrics", methods=["GET"])
    def prometheus_metrics():
        return Response(metrics.generate_metrics(), mimetype=metrics.get_content_type())

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"}), 200

    return app
