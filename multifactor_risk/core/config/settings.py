"""
Runtime settings for the risk service.

Each setting is taken from a command-line flag if given, otherwise from
an environment variable (a .env file is loaded first), otherwise from
its default.
"""

import os
import socket
from typing import Any, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from multifactor_risk.core.errors import ConfigError
from multifactor_risk.observability.logger import get_logger
from multifactor_risk.utils.validation import (
    ValidationError,
    normalize_endpoint,
    validate_cron_spec,
    validate_timeout,
)

logger = get_logger(__name__)

DEFAULT_HTTP_ADDRESS = ":9000"
DEFAULT_FHIR_URL = "http://localhost:3001"
DEFAULT_CRON_SPEC = "0 0 22 * * *"
DEFAULT_HTTP_TIMEOUT = 30.0


class Settings(BaseModel):
    """
    Resolved service settings.

    Attributes:
        http_address: Address the HTTP app listens on ("host:port" or ":port")
        fhir_url: FHIR server base URL
        redcap_url: REDCap API URL
        redcap_token: REDCap API token
        cron_spec: Six-field cron expression for scheduled refreshes
        http_timeout: Timeout in seconds for each REDCap/FHIR request
        db_*: PostgreSQL connection settings for the pie store
        service_config_path: Optional YAML override of the risk service config
    """

    http_address: str = DEFAULT_HTTP_ADDRESS
    fhir_url: str = DEFAULT_FHIR_URL
    redcap_url: str
    redcap_token: str
    cron_spec: str = DEFAULT_CRON_SPEC
    http_timeout: float = Field(DEFAULT_HTTP_TIMEOUT, gt=0)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "riskservice"
    db_user: str = "riskservice"
    db_password: str | None = None
    service_config_path: str | None = None

    @property
    def listen_host(self) -> str:
        host, _, _ = self.http_address.rpartition(":")
        return host or "0.0.0.0"

    @property
    def listen_port(self) -> int:
        _, _, port = self.http_address.rpartition(":")
        return int(port)

    @property
    def basis_pie_url(self) -> str:
        """Public URL prefix of this service's pie endpoint."""
        endpoint = self.http_address
        if endpoint.startswith(":"):
            endpoint = discover_self() + endpoint
        return f"http://{endpoint}/pies"


def _config_value(flags: Mapping[str, Any], flag: str, env_var: str, default: Any = None) -> Any:
    value = flags.get(flag)
    if value in (None, ""):
        value = os.getenv(env_var)
        if value in (None, ""):
            value = default
    return value


def _required_config_value(flags: Mapping[str, Any], flag: str, env_var: str, name: str) -> Any:
    value = _config_value(flags, flag, env_var)
    if value in (None, ""):
        raise ConfigError(f"{name} must be passed in as an argument or the {env_var} environment variable.")
    return value


def load_settings(flags: Mapping[str, Any] | None = None, env_file: str | None = None) -> Settings:
    """
    Build Settings from flags, environment and defaults.

    Args:
        flags: Parsed command-line values keyed by setting name
        env_file: Optional .env path (default: .env in the working directory)

    Raises:
        ConfigError: If a required setting is missing or a value is invalid
    """
    load_dotenv(env_file)
    flags = flags or {}

    try:
        settings = Settings(
            http_address=_config_value(flags, "http_address", "HTTP_HOST_AND_PORT", DEFAULT_HTTP_ADDRESS),
            fhir_url=normalize_endpoint(
                _config_value(flags, "fhir_url", "FHIR_URL", DEFAULT_FHIR_URL), field_name="FHIR URL"
            ),
            redcap_url=_required_config_value(flags, "redcap_url", "REDCAP_URL", "REDCap URL"),
            redcap_token=_required_config_value(flags, "redcap_token", "REDCAP_TOKEN", "REDCap API Token"),
            cron_spec=_config_value(flags, "cron_spec", "REDCAP_CRON", DEFAULT_CRON_SPEC),
            http_timeout=validate_timeout(
                _config_value(flags, "http_timeout", "HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT), "HTTP timeout"
            ),
            db_host=_config_value(flags, "db_host", "DB_HOST", "localhost"),
            db_port=int(_config_value(flags, "db_port", "DB_PORT", 5432)),
            db_name=_config_value(flags, "db_name", "DB_NAME", "riskservice"),
            db_user=_config_value(flags, "db_user", "DB_USER", "riskservice"),
            db_password=_config_value(flags, "db_password", "DB_PASSWORD"),
            service_config_path=_config_value(flags, "service_config", "RISK_SERVICE_CONFIG"),
        )
        validate_cron_spec(settings.cron_spec)
    except (ValidationError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"Invalid configuration: {e}") from e

    return settings


def discover_self() -> str:
    """
    Best-effort guess of this host's non-loopback IPv4 address.

    Falls back to "localhost" when no such address can be determined.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            # connect() on a UDP socket sends nothing; it only picks a route
            s.connect(("10.255.255.255", 1))
            address = s.getsockname()[0]
    except OSError:
        address = ""

    if not address or address.startswith("127."):
        logger.warning("Unable to determine IP address.  Defaulting to localhost.")
        return "localhost"
    return address
