# traffic_report_src/diagnostics_utils.py

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path
from typing import Dict, Optional
import logging

from traffic_report_src.file_utils import ensure_dir
from traffic_report_src.forecasting_utils import FittedSarima
from traffic_report_src.metrics_utils import ljung_box

logger = logging.getLogger(__name__)


def model_df(fit: FittedSarima) -> int:
    """ARMA coefficients consumed by the model, used to adjust Ljung-Box degrees of freedom."""
    p, _, q = fit.order
    P, _, Q, _ = fit.seasonal_order
    return p + q + P + Q


def save_residual_diagnostics(fit: FittedSarima,
                              out_dir: Path,
                              fname_prefix: str = "Residuals",
                              max_lag: int = 24) -> None:
    """
    Save residual diagnostics for a fitted model.

    Parameters
    ----------
    fit : FittedSarima
        Fitted model; burn-in NaNs in its residuals are dropped
    out_dir : Path
        Output directory where diagnostic artifacts will be written
    fname_prefix : str, default="Residuals"
        Prefix for output filenames to distinguish different models
    max_lag : int, default=24
        Largest lag of the ACF/PACF panel and the Ljung-Box table

    Notes
    -----
    Creates the following files:
    - {prefix}_ACF_PACF.png: Combined residual ACF and PACF plots
    - {prefix}_LjungBox.csv: Ljung-Box statistics for lags 1..max_lag
    - {prefix}_diagnostics.png: statsmodels standardized residual panel

    Each artifact is optional: a failure is logged and the others are still written.
    """
    ensure_dir(out_dir)
    resid = fit.residuals.dropna()
    if resid.empty:
        logger.warning("Residual diagnostics skipped: empty residual series.")
        return

    _save_acf_pacf_plots(resid, out_dir, fname_prefix, max_lag)
    _save_ljungbox_table(resid, out_dir, fname_prefix, max_lag, model_df(fit))
    _save_statsmodels_panel(fit, out_dir, fname_prefix)


def _save_acf_pacf_plots(resid: pd.Series, out_dir: Path, fname_prefix: str, max_lag: int) -> None:
    from statsmodels.graphics.tsaplots import plot_acf, plot_pacf

    lags = int(min(max_lag, max(1, len(resid) // 2 - 1)))
    try:
        fig, axes = plt.subplots(2, 1, figsize=(8, 6), dpi=150)
        plot_acf(resid, ax=axes[0], lags=lags, zero=False)
        axes[0].set_title("Residual ACF")
        plot_pacf(resid, ax=axes[1], lags=lags, zero=False, method="ywm")
        axes[1].set_title("Residual PACF")
        fig.tight_layout()
        fig.savefig(out_dir / f"{fname_prefix}_ACF_PACF.png", dpi=150)
        plt.close(fig)
    except (ValueError, np.linalg.LinAlgError) as e:
        plt.close("all")
        logger.warning("Failed to render residual ACF/PACF for %s: %s", fname_prefix, e)


def _save_ljungbox_table(resid: pd.Series, out_dir: Path, fname_prefix: str,
                         max_lag: int, df_model: int) -> None:
    from statsmodels.stats.diagnostic import acorr_ljungbox

    lag_max = int(min(max_lag, max(1, len(resid) - 1)))
    try:
        df_lb = acorr_ljungbox(resid, lags=np.arange(1, lag_max + 1), model_df=df_model, return_df=True)
        df_lb.index.name = "lag"
        df_lb.to_csv(out_dir / f"{fname_prefix}_LjungBox.csv", index=True)
    except ValueError as e:
        logger.warning("Ljung-Box table skipped for %s: %s", fname_prefix, e)


def _save_statsmodels_panel(fit: FittedSarima, out_dir: Path, fname_prefix: str) -> None:
    if fit.results is None:
        return
    try:
        fig = fit.results.plot_diagnostics(figsize=(10, 8))
        fig.tight_layout()
        fig.savefig(out_dir / f"{fname_prefix}_diagnostics.png", dpi=150)
        plt.close(fig)
    except (ValueError, np.linalg.LinAlgError) as e:
        # plot_diagnostics needs enough residuals past the burn-in for its lags
        plt.close("all")
        logger.warning("plot_diagnostics failed for %s: %s", fname_prefix, e)


def summarize_residuals(fit: FittedSarima, lag: int, alpha: float = 0.05) -> Dict[str, object]:
    """
    Residual summary used by the report: moments, Ljung-Box and Jarque-Bera.

    Returns
    -------
    dict
        Keys: model, n_residuals, residual_mean, residual_std, ljungbox_lag,
        ljungbox_stat, ljungbox_pvalue, ljungbox_adequate, jarque_bera_stat,
        jarque_bera_pvalue
    """
    from statsmodels.stats.stattools import jarque_bera

    resid = fit.residuals.dropna()
    results: Dict[str, object] = {
        "model": fit.label(),
        "n_residuals": int(len(resid)),
        "residual_mean": float(resid.mean()) if len(resid) else float("nan"),
        "residual_std": float(resid.std(ddof=1)) if len(resid) > 1 else float("nan"),
    }

    lb = ljung_box(resid, lag=lag, model_df=model_df(fit), alpha=alpha)
    results.update({
        "ljungbox_lag": lb.lag,
        "ljungbox_stat": lb.statistic,
        "ljungbox_pvalue": lb.p_value,
        "ljungbox_adequate": lb.adequate,
    })

    jb_stat, jb_pvalue, _, _ = jarque_bera(resid.to_numpy())
    results["jarque_bera_stat"] = float(jb_stat)
    results["jarque_bera_pvalue"] = float(jb_pvalue)
    return results


def interpret_diagnostic_results(results: dict, alpha: float = 0.05) -> Dict[str, object]:
    """
    Translate a residual summary into issues and recommendations.

    Parameters
    ----------
    results : dict
        Output of :func:`summarize_residuals`
    alpha : float, default=0.05
        Significance level for test interpretation
    """
    issues = []
    recommendations = []

    lb_pval = results.get("ljungbox_pvalue", float("nan"))
    if np.isfinite(lb_pval) and lb_pval <= alpha:
        issues.append(f"significant autocorrelation up to lag {results.get('ljungbox_lag')}")
        recommendations.append("Consider increasing AR or MA order, or the seasonal terms")

    jb_pval = results.get("jarque_bera_pvalue", float("nan"))
    if np.isfinite(jb_pval) and jb_pval < alpha:
        issues.append("non-normal residuals")
        recommendations.append("Prediction intervals assume Gaussian errors; treat coverage as approximate")

    return {
        "model": results.get("model", "unknown"),
        "overall_adequacy": "poor" if issues else "good",
        "issues": issues,
        "recommendations": recommendations,
    }


def residual_summary_frame(summaries: Dict[str, Dict[str, object]],
                           columns: Optional[list] = None) -> pd.DataFrame:
    """Stack per-model residual summaries into one table (one row per model)."""
    df = pd.DataFrame.from_dict(summaries, orient="index")
    df.index.name = "method"
    if columns:
        df = df[[c for c in columns if c in df.columns]]
    return df.reset_index()
