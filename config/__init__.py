"""Configuration management for the traffic volume ARIMA report."""

from .manager import (
    ConfigurationError,
    ConfigurationManager,
    get_config,
)

__all__ = [
    "ConfigurationError",
    "ConfigurationManager",
    "get_config",
]
