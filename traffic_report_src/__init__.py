# traffic_report_src/__init__.py

"""
Traffic Volume ARIMA Report - hourly per-site traffic counts modeled with seasonal ARIMA

Key Components
--------------
- config_utils: Configuration management and CLI override support
- data_utils: Workbook loading (counts sheet, sites sheet) and validation
- parsing_utils: Command-line argument and configuration parsing
- transform_utils: Hourly series preparation, differencing, volume change per site
- forecasting_utils: Manual and automatic SARIMA fitting, forecasts, baselines
- metrics_utils: RMSE, MAE, Ljung-Box
- plotting_utils: Exploratory and forecast figures
- diagnostics_utils: Residual analysis and model diagnostics
- file_utils: Markdown report, metrics CSV and path utilities
- main: Main entry point and workflow orchestration

Usage
-----
    # Command-line usage
    python -m traffic_report_src.main --workbook data/traffic_counts.xlsx --site 1234

    # Programmatic usage
    from traffic_report_src import fit_manual_sarima, forecast_sarima, rmse
"""

__version__ = "1.0.0"

from .config_utils import initialize_config, get_config_value
from .data_utils import DataLayoutError, load_traffic_workbook
from .transform_utils import prepare_site_series
from .forecasting_utils import (
    ModelFitError, NoViableModelError, fit_manual_sarima, auto_sarima, forecast_sarima
)
from .metrics_utils import rmse, ljung_box
from .main import main, run_report

__all__ = [
    "main",
    "run_report",
    "initialize_config",
    "get_config_value",
    "DataLayoutError",
    "load_traffic_workbook",
    "prepare_site_series",
    "ModelFitError",
    "NoViableModelError",
    "fit_manual_sarima",
    "auto_sarima",
    "forecast_sarima",
    "rmse",
    "ljung_box",
    "__version__",
]
