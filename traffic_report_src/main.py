# traffic_report_src/main.py

"""
Seasonal ARIMA report on hourly per-site traffic counts.

Purpose
-------
- Load a traffic count workbook (hourly counts sheet + site metadata sheet)
- Reduce one site to a gap-free hourly series (linear interpolation over time)
- Exploratory figures: volume line chart, site density colored by volume
  change, ACF/PACF of the level series
- Stationarity checks (ADF and KPSS on level, first and seasonal differences)
- Fit a manually specified SARIMA and an automatically order-selected SARIMA
- Forecast the held-out tail with both models and the naive baselines, score
  with RMSE/MAE, and run Ljung-Box on the residuals
- Write figures, a markdown report and a metrics CSV

Configuration-Driven Workflow
-----------------------------
Sheet layout, model orders, search bounds and evaluation settings live in
``config/report.yaml``. CLI arguments override configuration values where a
flag exists.
"""

import argparse
import logging
import warnings
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from .config_utils import initialize_config, get_config_value, get_auto_search_settings
from .data_utils import (
    DataLayoutError, load_traffic_workbook, pick_default_site, describe_counts, site_metadata
)
from .parsing_utils import (
    parse_order_arg, seasonal_order_with_period, parse_intervals_arg,
    validate_strategy, validate_log_level
)
from .transform_utils import prepare_site_series, site_volume_change, split_holdout
from .forecasting_utils import (
    ModelFitError, NoViableModelError, stationarity_table, fit_manual_sarima, auto_sarima,
    forecast_sarima, naive_forecast, seasonal_naive_forecast
)
from .metrics_utils import score_forecasts
from .diagnostics_utils import (
    save_residual_diagnostics, summarize_residuals, interpret_diagnostic_results,
    residual_summary_frame
)
from .plotting_utils import (
    plot_site_series, plot_volume_change_density, plot_series_acf_pacf, plot_forecast_comparison
)
from .file_utils import (
    ensure_dir, resolve_path, append_metrics_csv_row, start_report_md, append_report_md,
    md_table_from_df
)

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent


def _optional_step(name: str, func, *args, **kwargs) -> bool:
    """Run a figure or diagnostic step; failures are logged and the report continues."""
    try:
        func(*args, **kwargs)
        return True
    except Exception as e:
        logger.warning("%s failed: %s", name, e)
        return False


AUTO_SEARCH_DEFAULTS = {"max_p": 5, "max_q": 5, "max_P": 2, "max_Q": 2, "max_d": 2, "max_D": 1,
                        "max_order": 5, "stepwise_max_models": 94}


def _auto_search_kwargs(args: Optional[argparse.Namespace]) -> Dict[str, Any]:
    cfg = get_auto_search_settings()
    out = {k: int(cfg[k] if cfg.get(k) is not None else v) for k, v in AUTO_SEARCH_DEFAULTS.items()}
    cli_strategy = getattr(args, "auto_strategy", None) if args is not None else None
    out["strategy"] = validate_strategy(cli_strategy or cfg.get("strategy") or "stepwise")
    out["criterion"] = cfg.get("criterion") or "bic"
    return out


def run_report(workbook_path: Path,
               figures_dir: Path,
               metrics_csv_path: Optional[Path] = None,
               report_path: Optional[Path] = None,
               args: Optional[argparse.Namespace] = None) -> Dict[str, Any]:
    """
    Execute the full traffic report for one site.

    Parameters
    ----------
    workbook_path : Path
        Traffic count workbook (.xlsx)
    figures_dir : Path
        Output directory for figures and residual diagnostics (created if missing)
    metrics_csv_path : Optional[Path]
        If provided, append one metrics row per forecasting method
    report_path : Optional[Path]
        Markdown report path; defaults to ``<figures_dir>/report.md``
    args : Optional[argparse.Namespace]
        CLI arguments; any attribute left as None falls back to the configuration

    Returns
    -------
    dict
        site_id, series, manual (FittedSarima), auto (AutoSarimaResult or None),
        scores (DataFrame) and residuals (DataFrame)

    Raises
    ------
    DataLayoutError
        If the workbook cannot be read
    ModelFitError
        If the manual model fails numerically
    ValueError
        If the site has no data, the hold-out leaves no training data, or an
        explicit seasonal order disagrees with the seasonal period

    Workflow
    --------
    - Load workbook, pick the site, build the hourly series
    - Exploratory figures and stationarity table
    - Manual SARIMA fit, automatic SARIMA search (unless skipped)
    - Forecast the hold-out with both models, naive and seasonal naive
    - RMSE/MAE scores, Ljung-Box and residual diagnostics
    - Markdown report and metrics CSV
    """
    ensure_dir(figures_dir)
    report_path = report_path or figures_dir / get_config_value("output.report_md", "report.md")
    run_ts = datetime.now(timezone.utc).isoformat(timespec="seconds")

    # Stage 1: load
    counts, sites = load_traffic_workbook(
        workbook_path,
        counts_sheet=get_config_value("data.counts_sheet", "Counts"),
        sites_sheet=get_config_value("data.sites_sheet", "Sites"),
        skip_rows=int(get_config_value("data.skip_rows", 3)),
        site_id_column=get_config_value("data.site_id_column", "site_id"),
        location_column=get_config_value("data.location_column", "lat_long"),
    )
    site_id = get_config_value("series.site_id", None, args, "site")
    if site_id is None:
        site_id = pick_default_site(counts)
        logger.info("No site configured; using site %s (most observations).", site_id)
    site_id = str(site_id)

    # Stage 2: series
    series = prepare_site_series(
        counts, site_id,
        start=get_config_value("series.start", None, args, "start"),
        end=get_config_value("series.end", None, args, "end"),
        hour_convention=get_config_value("series.hour_convention", "auto"),
    )
    s = int(get_config_value("model.seasonal_period", 24, args, "seasonal_period"))
    order = parse_order_arg(get_config_value("model.manual.order", [1, 0, 1], args, "order"), 3, "order")
    seasonal_order = seasonal_order_with_period(
        get_config_value("model.manual.seasonal_order", [2, 0, 2], args, "seasonal_order"), s)
    holdout = int(get_config_value("evaluation.holdout", 24, args, "holdout"))
    alpha = float(get_config_value("evaluation.alpha", 0.05))
    lb_lag = int(get_config_value("evaluation.ljung_box_lag", None) or max(s, 1))
    intervals_cfg = get_config_value("evaluation.intervals", [80, 95])
    coverage_levels = parse_intervals_arg(
        getattr(args, "intervals", None) if args is not None else None,
        default=",".join(str(v) for v in intervals_cfg),
    )

    start_report_md(report_path, f"Traffic volume ARIMA report: site {site_id}")
    meta = site_metadata(sites, site_id)
    location = (f"{meta['latitude']:.5f}, {meta['longitude']:.5f}"
                if meta is not None and pd.notna(meta["latitude"]) else "unknown")
    append_report_md(report_path, "Data", "\n".join([
        f"- workbook: `{workbook_path}`",
        f"- count rows: {len(counts)} across {counts['site_id'].nunique()} sites",
        "",
        md_table_from_df(describe_counts(counts), max_rows=15),
    ]))
    append_report_md(report_path, "Series", "\n".join([
        f"- site: {site_id} (location {location})",
        f"- span: {series.index.min()} to {series.index.max()}",
        f"- hourly observations: {len(series)}",
        f"- mean volume: {series.mean():.1f}, std: {series.std():.1f}",
    ]))

    # Stage 3: exploratory figures
    _optional_step("Series plot", plot_site_series, series, figures_dir / "SiteSeries.png", site_id)
    change = site_volume_change(counts, sites)
    _optional_step("Density plot", plot_volume_change_density, change, figures_dir / "VolumeChangeDensity.png")
    _optional_step("ACF/PACF plot", plot_series_acf_pacf, series, figures_dir / "Series_ACF_PACF.png",
                   lags=max(48, 2 * s))

    # Stage 4: stationarity
    stat_df = stationarity_table(series, s, alpha=alpha)
    logger.info("Stationarity tests:\n%s", stat_df.to_string(index=False))
    append_report_md(report_path, "Stationarity", md_table_from_df(stat_df, max_rows=20))

    train, test = split_holdout(series, holdout)
    logger.info("Training on %d observations, holding out %d.", len(train), len(test))

    # Stage 5: manual model
    manual = fit_manual_sarima(train, order, seasonal_order)
    params_df = manual.params.rename("estimate").reset_index().rename(columns={"index": "parameter"})
    append_report_md(report_path, f"Manual model {manual.label()}", "\n".join([
        f"- log-likelihood: {manual.llf:.2f}",
        f"- AIC: {manual.aic:.2f}, BIC: {manual.bic:.2f}, AICc: {manual.aicc:.2f}",
        f"- converged: {manual.converged}",
        "",
        md_table_from_df(params_df, max_rows=30, float_digits=4),
    ]))

    # Stage 6: automatic model
    auto = None
    if not (args is not None and getattr(args, "skip_auto", False)):
        search = _auto_search_kwargs(args)
        try:
            auto = auto_sarima(train, s, **search)
        except NoViableModelError as e:
            logger.error("Automatic order selection failed: %s", e)
        if auto is not None:
            top = auto.candidates.copy()
            append_report_md(report_path, f"Automatic model {auto.best.label()}", "\n".join([
                f"- strategy: {auto.strategy}, criterion: {auto.criterion}",
                f"- candidates fitted: {len(top)}",
                f"- AICc: {auto.best.aicc:.2f}, converged: {auto.best.converged}",
                "",
                md_table_from_df(top, max_rows=10),
            ]))

    fits = {"manual": manual}
    if auto is not None:
        fits["auto"] = auto.best

    # Stage 7: forecasts, scores and residual checks
    h = len(test)
    forecasts = {name: forecast_sarima(fit, h, coverage_levels) for name, fit in fits.items()}
    forecasts["naive"] = naive_forecast(train, h)
    if s > 1 and len(train) >= s:
        forecasts["seasonal_naive"] = seasonal_naive_forecast(train, h, s)

    scores = pd.DataFrame(columns=["method", "RMSE", "MAE"])
    if h > 0:
        scores = score_forecasts(test, {k: f.mean.to_numpy() for k, f in forecasts.items()})
        logger.info("Hold-out scores (%d steps):\n%s", h, scores.to_string(index=False))
        append_report_md(report_path, f"Forecast accuracy ({h}-step hold-out)", md_table_from_df(scores))
        _optional_step(
            "Forecast comparison plot", plot_forecast_comparison,
            test, {k: f.mean.to_numpy() for k, f in forecasts.items()},
            figures_dir / "ForecastComparison.png",
            title=f"Hold-out forecasts, site {site_id}",
            history=train.iloc[-3 * max(s, h):],
            intervals={lvl: band for lvl, band in forecasts["manual"].intervals.items()},
            interval_label="manual",
        )
    else:
        logger.info("Hold-out is 0; forecast scoring skipped.")

    summaries = {}
    lines = []
    for name, fit in fits.items():
        summaries[name] = summarize_residuals(fit, lag=lb_lag, alpha=alpha)
        verdict = interpret_diagnostic_results(summaries[name], alpha=alpha)
        lb_p = summaries[name]["ljungbox_pvalue"]
        logger.info("%s Ljung-Box(lag=%d) p=%.4f -> %s", fit.label(), summaries[name]["ljungbox_lag"],
                    lb_p, "adequate" if summaries[name]["ljungbox_adequate"] else "autocorrelated residuals")
        lines.append(f"- {name}: {verdict['overall_adequacy']}"
                     + (f" ({'; '.join(verdict['issues'])})" if verdict["issues"] else ""))
        _optional_step(f"Residual diagnostics ({name})", save_residual_diagnostics,
                       fit, figures_dir, fname_prefix=f"Residuals_{name}", max_lag=max(lb_lag, 24))
    resid_df = residual_summary_frame(summaries, columns=[
        "model", "n_residuals", "residual_mean", "residual_std", "ljungbox_lag",
        "ljungbox_stat", "ljungbox_pvalue", "ljungbox_adequate", "jarque_bera_pvalue",
    ])
    append_report_md(report_path, "Residual diagnostics",
                     md_table_from_df(resid_df, float_digits=4) + "\n\n" + "\n".join(lines))

    # Stage 8: metrics CSV
    score_lookup = scores.set_index("method") if not scores.empty else pd.DataFrame()
    for method in forecasts:
        fit = fits.get(method)
        row = {
            "timestamp": run_ts,
            "site_id": site_id,
            "method": method,
            "order": fit.order if fit else "",
            "seasonal_order": fit.seasonal_order if fit else "",
            "AICc": fit.aicc if fit else "",
            "RMSE": score_lookup.loc[method, "RMSE"] if method in score_lookup.index else "",
            "MAE": score_lookup.loc[method, "MAE"] if method in score_lookup.index else "",
            "ljungbox_lag": summaries[method]["ljungbox_lag"] if fit else "",
            "ljungbox_pvalue": summaries[method]["ljungbox_pvalue"] if fit else "",
            "converged": fit.converged if fit else "",
            "train_obs": len(train),
            "holdout": h,
        }
        append_metrics_csv_row(metrics_csv_path, row)

    logger.info("Report written to %s", report_path)
    return {
        "site_id": site_id,
        "series": series,
        "manual": manual,
        "auto": auto,
        "scores": scores,
        "residuals": resid_df,
    }


def setup_cli_parser() -> argparse.ArgumentParser:
    """
    Set up the command-line argument parser.

    Flags left unset fall back to ``config/report.yaml``.
    """
    parser = argparse.ArgumentParser(
        description="Seasonal ARIMA report on hourly per-site traffic counts."
    )

    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to a YAML configuration file (default: config/report.yaml)."
    )
    parser.add_argument(
        "--workbook", type=str, default=None,
        help="Traffic count workbook (.xlsx). Uses data.workbook from the config if not specified."
    )
    parser.add_argument(
        "--site", type=str, default=None,
        help="Site id to model. Defaults to the site with the most observations."
    )
    parser.add_argument("--start", type=str, default=None, help="First timestamp to include.")
    parser.add_argument("--end", type=str, default=None, help="Last timestamp to include.")
    parser.add_argument(
        "--figures-dir", type=str, default=None,
        help="Directory to write figures and the markdown report."
    )
    parser.add_argument(
        "--metrics-csv", type=str, default=None,
        help="Append evaluation metrics rows to this CSV (resolved relative to base_dir if not absolute)."
    )
    parser.add_argument(
        "--order", type=str, default=None,
        help="Manual non-seasonal order 'p,d,q' (e.g., '1,0,1')."
    )
    parser.add_argument(
        "--seasonal-order", type=str, default=None,
        help="Manual seasonal order 'P,D,Q' or 'P,D,Q,s' (e.g., '2,0,2'); an explicit s must match --seasonal-period."
    )
    parser.add_argument(
        "--seasonal-period", type=int, default=None,
        help="Seasonal period in hours (default 24)."
    )
    parser.add_argument(
        "--auto-strategy", type=validate_strategy, default=None,
        help="Automatic order search: 'stepwise' or 'grid'."
    )
    parser.add_argument(
        "--skip-auto", action="store_true", default=False,
        help="Skip the automatic order search."
    )
    parser.add_argument(
        "--holdout", type=int, default=None,
        help="Number of trailing hours held out for forecast evaluation."
    )
    parser.add_argument(
        "--intervals", type=str, default=None,
        help="Comma-separated predictive interval coverages (e.g., '80,95')."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity level."
    )
    return parser


def setup_logging(log_level: str) -> None:
    """
    Configure logging with specified level and warning filters.

    Parameters
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = validate_log_level(log_level)
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    if level == "DEBUG":
        warnings.resetwarnings()
        warnings.filterwarnings("default")
    else:
        warnings.filterwarnings("ignore", category=FutureWarning)
        warnings.filterwarnings("ignore", category=UserWarning, module="statsmodels")


def main(argv: Optional[list] = None) -> None:
    """
    Main entry point for the traffic report.

    Fatal data and model errors are turned into a non-zero exit with a
    one-line message.
    """
    parser = setup_cli_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    initialize_config(Path(args.config) if args.config else None)

    workbook_path = resolve_path(
        get_config_value("data.workbook", "data/traffic_counts.xlsx", args, "workbook"), BASE_DIR)
    figures_dir = resolve_path(
        get_config_value("output.figures_dir", "figures", args, "figures_dir"), BASE_DIR)
    metrics_csv = get_config_value("output.metrics_csv", None, args, "metrics_csv")
    metrics_csv_path = resolve_path(metrics_csv, BASE_DIR) if metrics_csv else None

    try:
        run_report(workbook_path, figures_dir, metrics_csv_path, args=args)
    except DataLayoutError as e:
        raise SystemExit(f"Input workbook error: {e}") from e
    except ModelFitError as e:
        raise SystemExit(f"Model fitting failed: {e}") from e
    except ValueError as e:
        raise SystemExit(f"Invalid input: {e}") from e


if __name__ == "__main__":
    main()
