# traffic_report_src/metrics_utils.py

import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple, Union
import logging

logger = logging.getLogger(__name__)

ArrayLike = Union[List[float], np.ndarray, pd.Series]


def paired_finite(y_true: ArrayLike, y_hat: ArrayLike) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert both inputs to 1D arrays and keep only pairs where both are finite.

    Parameters
    ----------
    y_true : ArrayLike
        True values
    y_hat : ArrayLike
        Predicted values

    Returns
    -------
    Tuple[np.ndarray, np.ndarray]
        Aligned arrays with every pair containing a missing value removed

    Raises
    ------
    ValueError
        If the inputs have different lengths
    """
    yt = np.asarray(y_true, dtype=float).ravel()
    yh = np.asarray(y_hat, dtype=float).ravel()
    if len(yt) != len(yh):
        raise ValueError(f"Length mismatch: {len(yt)} actual vs {len(yh)} predicted values")
    mask = np.isfinite(yt) & np.isfinite(yh)
    return yt[mask], yh[mask]


def mae(y_true: ArrayLike, y_hat: ArrayLike) -> float:
    """
    Calculate Mean Absolute Error.

    MAE provides a robust measure of prediction accuracy that is less sensitive
    to outliers compared to RMSE.

    Returns
    -------
    float
        Mean absolute error over valid pairs, or NaN if there are none
    """
    yt, yh = paired_finite(y_true, y_hat)
    if yt.size == 0:
        return float("nan")
    return float(np.mean(np.abs(yh - yt)))


def rmse(y_true: ArrayLike, y_hat: ArrayLike) -> float:
    """
    Calculate Root Mean Square Error.

    RMSE penalizes large errors more heavily than MAE, making it useful when
    large errors are particularly undesirable.

    Parameters
    ----------
    y_true : ArrayLike
        True values
    y_hat : ArrayLike
        Predicted values, same length as ``y_true``

    Returns
    -------
    float
        Root mean square error over valid pairs, or NaN if there are none.
        Always >= 0 and exactly 0 only when every valid pair matches.

    Raises
    ------
    ValueError
        If the inputs have different lengths
    """
    yt, yh = paired_finite(y_true, y_hat)
    if yt.size == 0:
        return float("nan")
    return float(np.sqrt(np.mean((yh - yt) ** 2)))


@dataclass(frozen=True)
class LjungBoxResult:
    lag: int
    model_df: int
    statistic: float
    p_value: float
    alpha: float

    @property
    def adequate(self) -> bool:
        """True when no residual autocorrelation is detected at ``alpha``."""
        return bool(np.isfinite(self.p_value) and self.p_value > self.alpha)


def ljung_box(residuals: ArrayLike,
              lag: int,
              model_df: int = 0,
              alpha: float = 0.05) -> LjungBoxResult:
    """
    Ljung-Box portmanteau test for residual autocorrelation up to ``lag``.

    Parameters
    ----------
    residuals : ArrayLike
        Model residuals; NaNs (differencing burn-in) are dropped
    lag : int
        Number of autocorrelation lags pooled into the statistic
    model_df : int, default=0
        Degrees of freedom consumed by the model (p + q + P + Q); the
        chi-square reference uses ``lag - model_df`` degrees of freedom
    alpha : float, default=0.05
        Level used by ``LjungBoxResult.adequate``

    Returns
    -------
    LjungBoxResult
        p-value is NaN when ``lag <= model_df``.

    Notes
    -----
    The result is reported only; an inadequate model is not refit.
    """
    from statsmodels.stats.diagnostic import acorr_ljungbox

    resid = pd.Series(np.asarray(residuals, dtype=float)).dropna()
    if lag < 1:
        raise ValueError(f"Ljung-Box lag must be at least 1, got {lag}")
    if len(resid) < 2:
        raise ValueError("Ljung-Box needs at least two residuals.")
    if lag >= len(resid):
        logger.warning("Ljung-Box lag %d reduced to %d (only %d residuals).", lag, len(resid) - 1, len(resid))
        lag = len(resid) - 1

    df_lb = acorr_ljungbox(resid, lags=[lag], model_df=model_df, return_df=True)
    stat = float(df_lb["lb_stat"].iloc[0])
    pval = float(df_lb["lb_pvalue"].iloc[0]) if lag > model_df else float("nan")
    return LjungBoxResult(lag=int(lag), model_df=int(model_df), statistic=stat, p_value=pval, alpha=alpha)


def score_forecasts(y_true: pd.Series,
                    forecasts: Mapping[str, ArrayLike],
                    baseline: Optional[str] = "naive") -> pd.DataFrame:
    """
    Score several forecasts of the same hold-out window.

    Parameters
    ----------
    y_true : pd.Series
        Hold-out actuals
    forecasts : Mapping[str, ArrayLike]
        Method name -> point forecasts (same length as ``y_true``)
    baseline : str, optional
        Name of the method used for the relative RMSE column

    Returns
    -------
    pd.DataFrame
        One row per method with RMSE, MAE and, when the baseline is present,
        RMSE relative to it. Sorted by RMSE.
    """
    rows: List[Dict[str, object]] = []
    for name, yhat in forecasts.items():
        rows.append({"method": name, "RMSE": rmse(y_true, yhat), "MAE": mae(y_true, yhat)})
    df = pd.DataFrame(rows, columns=["method", "RMSE", "MAE"])

    if baseline is not None and baseline in forecasts:
        base = float(df.loc[df["method"] == baseline, "RMSE"].iloc[0])
        df["RMSE_vs_" + baseline] = df["RMSE"] / base if base > 0 else np.nan
    return df.sort_values("RMSE", na_position="last").reset_index(drop=True)
