"""
Risk service configuration.

Describes how synchronized risk assessments are labelled on the FHIR
server: the assessment method coding, the predicted outcome, and the
default pie slices. The built-in configuration can be overridden from
a YAML file.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from multifactor_risk.core.errors import ConfigError
from multifactor_risk.core.models import PIE_CATEGORIES, Slice


class Coding(BaseModel):
    system: str
    code: str

    def to_fhir(self) -> dict[str, str]:
        return {"system": self.system, "code": self.code}


class CodeableConcept(BaseModel):
    coding: list[Coding] = Field(default_factory=list)
    text: str = ""

    def to_fhir(self) -> dict[str, Any]:
        concept: dict[str, Any] = {}
        if self.coding:
            concept["coding"] = [coding.to_fhir() for coding in self.coding]
        if self.text:
            concept["text"] = self.text
        return concept


class RiskServiceConfig(BaseModel):
    """
    Labels applied to every risk assessment the service posts.

    Attributes:
        name: Human readable service name
        method: Assessment method; its first coding identifies the
            assessments this service owns (used for replace-on-refresh)
        predicted_outcome: Outcome the score predicts
        default_pie_slices: Slice names, weights and max values (score 0)
            advertised for this service. Informational: Record.to_pie
            builds slices from PIE_CATEGORIES regardless of overrides.
    """

    name: str = Field(..., min_length=1)
    method: CodeableConcept
    predicted_outcome: CodeableConcept
    default_pie_slices: list[Slice] = Field(default_factory=list)

    @property
    def method_coding(self) -> Coding:
        if not self.method.coding:
            raise ConfigError(f"Risk service '{self.name}' has no method coding")
        return self.method.coding[0]

    @property
    def method_token(self) -> str:
        """FHIR token search value (system|code) for this service's assessments."""
        coding = self.method_coding
        return f"{coding.system}|{coding.code}"


REDCAP_RISK_SERVICE_CONFIG = RiskServiceConfig(
    name="Multi-Factor Risk Service",
    method=CodeableConcept(
        coding=[Coding(system="http://interventionengine.org/risk-assessments", code="MultiFactor")],
        text="Multi-Factor",
    ),
    predicted_outcome=CodeableConcept(text="Catastrophic Health Event"),
    default_pie_slices=[
        Slice(name=name, weight=25, value=0, max_value=4) for name, _ in PIE_CATEGORIES
    ],
)


class ServiceConfigLoader:
    """
    Loads a RiskServiceConfig from a YAML file.

    Expected YAML format:
    ```yaml
    name: Multi-Factor Risk Service
    method:
      coding:
        - system: http://interventionengine.org/risk-assessments
          code: MultiFactor
      text: Multi-Factor
    predicted_outcome:
      text: Catastrophic Health Event
    ```

    Keys that are left out fall back to the built-in configuration.
    """

    def __init__(self, config_path: str | Path):
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Risk service configuration file not found: {config_path}")

    def load(self) -> RiskServiceConfig:
        """
        Parse the YAML file into a RiskServiceConfig.

        Raises:
            ConfigError: If the YAML is not a mapping or fails validation
        """
        with open(self.config_path) as f:
            raw = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise ConfigError(f"{self.config_path} must contain a mapping at the top level")

        merged = REDCAP_RISK_SERVICE_CONFIG.model_dump(by_alias=True)
        merged.update(raw)

        try:
            config = RiskServiceConfig.model_validate(merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid risk service configuration in {self.config_path}: {e}") from e

        if not config.method.coding:
            raise ConfigError(f"{self.config_path}: method must have at least one coding")
        return config


def load_service_config(config_path: str | Path | None = None) -> RiskServiceConfig:
    """Load config from config_path, or return the built-in config when None."""
    if config_path is None:
        return REDCAP_RISK_SERVICE_CONFIG
    return ServiceConfigLoader(config_path).load()
