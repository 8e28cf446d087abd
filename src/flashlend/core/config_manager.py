"""
Flash-Loan Protocol Configuration Manager

Centralized configuration management supporting:
- Environment-based configs (development/staging/production)
- Config file loading (YAML/JSON)
- Command-line override support
- Environment variable support (FLASHLEND_*)
- Asset parameter validation
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, conint
from pydantic import ValidationError as PydanticValidationError

from .defi.flash_loans import FlashLoanProvider
from .defi.loan_parameters import BPS_DENOMINATOR, LoanParameters
from .defi.token_ledger import InMemoryTokenLedger, TokenLedger
from .exceptions import ConfigurationError, FlashLoanError
from .metrics import FlashLoanMetrics, get_flash_loan_metrics

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent / "config"
ENV_PREFIX = "FLASHLEND_"


class Environment(Enum):
    """Environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class ProtocolConfig:
    """Provider identity settings"""
    owner: str = "owner"
    fee_beneficiary: str = ""
    custodian_address: str = ""

    def validate(self):
        if not self.owner:
            raise ConfigurationError("protocol.owner cannot be empty")


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = "INFO"
    log_file: str = ""
    enable_console: bool = True
    enable_file: bool = False
    max_log_size: int = 10485760  # 10MB
    backup_count: int = 10

    def validate(self):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if str(self.level).upper() not in valid_levels:
            raise ConfigurationError(f"Invalid log level: {self.level}. Must be one of {valid_levels}")
        if self.max_log_size < 1024:
            raise ConfigurationError(f"Invalid max_log_size: {self.max_log_size}. Must be >= 1024")
        if self.enable_file and not self.log_file:
            raise ConfigurationError("logging.log_file is required when file logging is enabled")


@dataclass
class MetricsConfig:
    """Prometheus metrics settings"""
    enabled: bool = False
    namespace: str = "flashlend"

    def validate(self):
        if self.enabled and not self.namespace:
            raise ConfigurationError("metrics.namespace cannot be empty when metrics are enabled")


class AssetParametersInput(BaseModel):
    """Loan parameters as written in config files."""
    max_amount: conint(gt=0)
    min_amount: conint(ge=0) = 0
    base_premium_rate_bps: conint(ge=0, le=BPS_DENOMINATOR) = 0
    dynamic_premium_rate_bps: conint(ge=0) = 0
    max_duration: conint(ge=0) = 0

    def to_params(self) -> LoanParameters:
        return LoanParameters(
            max_amount=self.max_amount,
            min_amount=self.min_amount,
            base_premium_rate_bps=self.base_premium_rate_bps,
            dynamic_premium_rate_bps=self.dynamic_premium_rate_bps,
            max_duration=self.max_duration,
        )


class ConfigManager:
    """
    Configuration Manager for the flash-loan protocol

    Sources, highest priority first:
    1. Command-line overrides
    2. Environment variables (FLASHLEND_SECTION_KEY)
    3. Environment-specific config file
    4. Default config file
    5. Built-in defaults
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 config_dir: Optional[Union[str, Path]] = None,
                 cli_overrides: Optional[Dict[str, Any]] = None,
                 load_env_file: bool = True):
        if load_env_file:
            load_dotenv()

        self.environment = self._determine_environment(environment)
        self.config_dir = Path(config_dir).resolve() if config_dir else DEFAULT_CONFIG_DIR
        self.cli_overrides = cli_overrides or {}

        self.protocol: ProtocolConfig = ProtocolConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.metrics: MetricsConfig = MetricsConfig()
        self.assets: Dict[str, LoanParameters] = {}
        self.authorized_callers: List[str] = []

        self._raw_config: Dict[str, Any] = {}

        self._load_configuration()

    def _determine_environment(self, environment: Optional[str]) -> Environment:
        env_str = (environment or os.getenv("FLASHLEND_ENVIRONMENT", "development")).lower()

        env_mapping = {
            "dev": Environment.DEVELOPMENT,
            "development": Environment.DEVELOPMENT,
            "staging": Environment.STAGING,
            "stage": Environment.STAGING,
            "prod": Environment.PRODUCTION,
            "production": Environment.PRODUCTION,
        }
        return env_mapping.get(env_str, Environment.DEVELOPMENT)

    def _load_configuration(self):
        default_config = self._load_config_file("default")
        env_config = self._load_config_file(self.environment.value)

        merged_config = self._merge_configs(default_config, env_config)
        merged_config = self._apply_env_variables(merged_config)
        merged_config = self._apply_cli_overrides(merged_config)

        self._raw_config = merged_config

        self._parse_configuration(merged_config)
        self._validate_configuration()

        logger.debug(
            "Configuration loaded",
            extra={
                "event": "config.loaded",
                "environment": self.environment.value,
                "assets": len(self.assets),
            },
        )

    def _load_config_file(self, filename: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file; missing files yield {}."""
        yaml_path = self.config_dir / f"{filename}.yaml"
        if yaml_path.exists():
            with open(yaml_path, "r", encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as exc:
                    raise ConfigurationError(f"Invalid YAML in {yaml_path}: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file {yaml_path} must contain a mapping")
            return data

        json_path = self.config_dir / f"{filename}.json"
        if json_path.exists():
            with open(json_path, "r", encoding="utf-8") as f:
                try:
                    return json.load(f)
                except json.JSONDecodeError as exc:
                    raise ConfigurationError(f"Invalid JSON in {json_path}: {exc}") from exc

        return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment variable overrides

        Format: FLASHLEND_SECTION_KEY=value, e.g.
        FLASHLEND_LOGGING_LEVEL=DEBUG
        FLASHLEND_PROTOCOL_OWNER=treasury
        """
        result = config.copy()

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX) or key == "FLASHLEND_ENVIRONMENT":
                continue

            parts = key[len(ENV_PREFIX):].lower().split("_")
            if len(parts) < 2:
                continue

            section = parts[0]
            config_key = "_".join(parts[1:])

            if section not in ("protocol", "logging", "metrics"):
                continue

            section_data = dict(result.get(section) or {})
            section_data[config_key] = self._parse_env_value(value)
            result[section] = section_data

        return result

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool]:
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _apply_cli_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply dotted-key overrides such as ``{"logging.level": "DEBUG"}``."""
        result = config.copy()

        for key, value in self.cli_overrides.items():
            parts = key.split(".")

            if len(parts) == 1:
                result[key] = value
            elif len(parts) == 2:
                section, config_key = parts
                section_data = dict(result.get(section) or {})
                section_data[config_key] = value
                result[section] = section_data
            else:
                raise ConfigurationError(f"Unsupported override key: {key}")

        return result

    def _parse_configuration(self, config: Dict[str, Any]):
        try:
            self.protocol = ProtocolConfig(**(config.get("protocol") or {}))
            self.logging = LoggingConfig(**(config.get("logging") or {}))
            self.metrics = MetricsConfig(**(config.get("metrics") or {}))
        except TypeError as exc:
            raise ConfigurationError(f"Unknown configuration key: {exc}") from exc

        self.assets = {}
        for asset, raw in (config.get("assets") or {}).items():
            self.assets[str(asset)] = self._parse_asset(str(asset), raw)

        callers = config.get("authorized_callers") or []
        if not isinstance(callers, list):
            raise ConfigurationError("authorized_callers must be a list")
        self.authorized_callers = [str(c) for c in callers]

    @staticmethod
    def _parse_asset(asset: str, raw: Any) -> LoanParameters:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Asset {asset} must be a mapping of loan parameters")
        try:
            params = AssetParametersInput(**raw).to_params()
            params.validate()
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Invalid parameters for asset {asset}: {exc}") from exc
        except FlashLoanError as exc:
            raise ConfigurationError(f"Invalid parameters for asset {asset}: {exc.message}") from exc
        return params

    def _validate_configuration(self):
        self.protocol.validate()
        self.logging.validate()
        self.metrics.validate()

    def get(self, key: str, default: Any = None) -> Any:
        """Dotted-key lookup into the merged raw configuration."""
        value: Any = self._raw_config
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environment": self.environment.value,
            "protocol": asdict(self.protocol),
            "logging": asdict(self.logging),
            "metrics": asdict(self.metrics),
            "assets": {asset: params.to_dict() for asset, params in self.assets.items()},
            "authorized_callers": list(self.authorized_callers),
        }

    def __repr__(self) -> str:
        return f"ConfigManager(environment={self.environment.value}, assets={len(self.assets)})"


def build_provider(
    config: ConfigManager,
    token_ledger: Optional[TokenLedger] = None,
    metrics: Optional[FlashLoanMetrics] = None,
) -> FlashLoanProvider:
    """
    Construct a provider from configuration.

    Assets are listed and callers authorized through the provider's own
    admin operations, using the configured owner.
    """
    if metrics is None and config.metrics.enabled:
        metrics = get_flash_loan_metrics(namespace=config.metrics.namespace)

    return FlashLoanProvider(
        token_ledger=token_ledger if token_ledger is not None else InMemoryTokenLedger(),
        owner=config.protocol.owner,
        address=config.protocol.custodian_address,
        fee_beneficiary=config.protocol.fee_beneficiary,
        initial_assets=dict(config.assets),
        initial_callers=list(config.authorized_callers),
        metrics=metrics,
    )
