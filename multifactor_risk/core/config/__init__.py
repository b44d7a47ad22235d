"""
Service configuration: runtime settings and risk assessment labelling.
"""

from .service_config import (
    REDCAP_RISK_SERVICE_CONFIG,
    CodeableConcept,
    Coding,
    RiskServiceConfig,
    ServiceConfigLoader,
    load_service_config,
)
from .settings import Settings, discover_self, load_settings

__all__ = [
    "Settings",
    "load_settings",
    "discover_self",
    "RiskServiceConfig",
    "Coding",
    "CodeableConcept",
    "ServiceConfigLoader",
    "REDCAP_RISK_SERVICE_CONFIG",
    "load_service_config",
]
