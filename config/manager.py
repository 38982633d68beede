"""YAML-backed configuration manager for the traffic report.

Values are addressed with dotted keys (``model.auto.strategy``). The default
file is ``config/report.yaml``; an alternative can be selected through the
``TRAFFIC_REPORT_CONFIG`` environment variable.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "report.yaml"
CONFIG_ENV_VAR = "TRAFFIC_REPORT_CONFIG"

VALID_STRATEGIES = ("stepwise", "grid")
VALID_CRITERIA = ("aicc", "aic", "bic")


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be read or parsed."""


class ConfigurationManager:
    """Loads the report YAML and exposes dotted-key access."""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            config_path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.is_file():
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigurationError(f"Top level of {self.config_path} must be a mapping")

        logger.debug("Loaded configuration from %s", self.config_path)
        return config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Example: ``config.get('model.manual.order')`` -> ``[1, 0, 1]``
        """
        value: Any = self.config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def get_auto_search_config(self) -> Dict[str, Any]:
        """Copy of the automatic order search settings (``model.auto``)."""
        return dict(self.get("model.auto", {}) or {})

    def validate_configuration(self) -> Dict[str, List[str]]:
        """
        Check the loaded values and return problems grouped by section.

        An empty dict means the configuration is usable as-is.
        """
        errors: Dict[str, List[str]] = {}

        def _add(section: str, message: str) -> None:
            errors.setdefault(section, []).append(message)

        skip_rows = self.get("data.skip_rows", 0)
        if not isinstance(skip_rows, int) or skip_rows < 0:
            _add("data", f"skip_rows must be a non-negative integer, got {skip_rows!r}")

        period = self.get("model.seasonal_period", 24)
        if not isinstance(period, int) or period < 1:
            _add("model", f"seasonal_period must be a positive integer, got {period!r}")

        order = self.get("model.manual.order", [1, 0, 1])
        if not (isinstance(order, list) and len(order) == 3):
            _add("model", f"manual.order must be a list of three integers, got {order!r}")

        seasonal = self.get("model.manual.seasonal_order", [0, 0, 0])
        if not (isinstance(seasonal, list) and len(seasonal) in (3, 4)):
            _add("model", f"manual.seasonal_order must be [P, D, Q] or [P, D, Q, s], got {seasonal!r}")

        strategy = self.get("model.auto.strategy", "stepwise")
        if strategy not in VALID_STRATEGIES:
            _add("model", f"auto.strategy must be one of {VALID_STRATEGIES}, got {strategy!r}")

        criterion = self.get("model.auto.criterion", "bic")
        if criterion not in VALID_CRITERIA:
            _add("model", f"auto.criterion must be one of {VALID_CRITERIA}, got {criterion!r}")

        holdout = self.get("evaluation.holdout", 24)
        if not isinstance(holdout, int) or holdout < 0:
            _add("evaluation", f"holdout must be a non-negative integer, got {holdout!r}")

        alpha = self.get("evaluation.alpha", 0.05)
        if not isinstance(alpha, (int, float)) or not 0.0 < alpha < 1.0:
            _add("evaluation", f"alpha must lie in (0, 1), got {alpha!r}")

        return errors


_config_instance: Optional[ConfigurationManager] = None


def get_config(config_path: Optional[Path] = None) -> ConfigurationManager:
    """Return the shared configuration manager, loading it on first use."""
    global _config_instance
    if _config_instance is None or config_path is not None:
        _config_instance = ConfigurationManager(config_path)
    return _config_instance
