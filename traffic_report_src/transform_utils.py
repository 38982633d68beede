# traffic_report_src/transform_utils.py

import logging
import warnings
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from helpers.temporal import build_hourly_timestamp, interpolate_time, regularize

logger = logging.getLogger(__name__)


def prepare_site_series(counts: pd.DataFrame,
                        site_id: str,
                        start: Optional[str] = None,
                        end: Optional[str] = None,
                        hour_convention: str = "auto") -> pd.Series:
    """
    Reduce the tidy counts frame to one gap-free hourly volume series for a site.

    Steps: filter the site, build hourly timestamps from date + hour, restrict to
    the optional [start, end] window, collapse duplicate timestamps by their mean,
    reindex onto a complete hourly range, and fill gaps by linear interpolation
    over time.

    Parameters
    ----------
    counts : pd.DataFrame
        Output of ``data_utils.read_counts_sheet``
    site_id : str
        Site to extract
    start, end : str, optional
        Inclusive timestamp bounds (anything ``pd.Timestamp`` accepts)
    hour_convention : str, default="auto"
        Passed to ``build_hourly_timestamp``

    Returns
    -------
    pd.Series
        Hourly series named ``volume`` with a strictly increasing DatetimeIndex
        (freq="h") and no missing values.

    Raises
    ------
    ValueError
        If the site has no observations in the requested window.
    """
    rows = counts[counts["site_id"] == str(site_id)]
    if rows.empty:
        raise ValueError(f"No count rows for site {site_id!r}.")

    ts = build_hourly_timestamp(rows["count_date"], rows["hour"], hour_convention)
    series = pd.Series(rows["volume"].to_numpy(dtype=float), index=pd.DatetimeIndex(ts), name="volume")
    series.index.name = "timestamp"

    if start is not None:
        series = series[series.index >= pd.Timestamp(start)]
    if end is not None:
        series = series[series.index <= pd.Timestamp(end)]
    if series.dropna().empty:
        raise ValueError(f"Site {site_id!r} has no volume observations between {start} and {end}.")

    n_dupes = int(series.index.duplicated().sum())
    if n_dupes:
        logger.warning("Site %s: %d duplicate hourly timestamps averaged.", site_id, n_dupes)

    regular = regularize(series, freq="h")
    n_missing = int(regular.isna().sum())
    out = interpolate_time(regular)
    logger.info("Site %s: %d hourly observations, %d filled by interpolation (%s to %s).",
                site_id, len(out), n_missing, out.index.min(), out.index.max())
    return out


def require_complete(series: pd.Series) -> pd.Series:
    """
    Fail fast when a missing value reaches model fitting.

    Raises
    ------
    ValueError
        If the series is empty or contains NaN.
    """
    if series.empty:
        raise ValueError("Cannot model an empty series.")
    n_missing = int(series.isna().sum())
    if n_missing:
        raise ValueError(f"Series contains {n_missing} missing value(s); interpolate before modeling.")
    return series


def split_holdout(series: pd.Series, holdout: int) -> Tuple[pd.Series, pd.Series]:
    """
    Split off the last ``holdout`` observations as the evaluation tail.

    Returns
    -------
    Tuple[pd.Series, pd.Series]
        (train, test); ``test`` is empty when ``holdout`` is 0.
    """
    if holdout < 0:
        raise ValueError("holdout must be non-negative")
    if holdout >= len(series):
        raise ValueError(f"holdout={holdout} leaves no training data (series length {len(series)}).")
    if holdout == 0:
        return series, series.iloc[0:0]
    return series.iloc[:-holdout], series.iloc[-holdout:]


def difference(series: pd.Series, d: int = 1, D: int = 0, s: int = 1) -> pd.Series:
    """
    Apply ``D`` seasonal differences at lag ``s`` followed by ``d`` ordinary differences.

    The leading ``d + s*D`` values are undefined and dropped.
    """
    out = series.astype(float)
    for _ in range(int(D)):
        out = out.diff(s)
    for _ in range(int(d)):
        out = out.diff()
    return out.dropna()


def site_volume_change(counts: pd.DataFrame, sites: pd.DataFrame) -> pd.DataFrame:
    """
    Per-site change of mean hourly volume between the first and last count year.

    Sites counted in only one year get a change of 0. The result is joined with
    the site coordinates; sites without coordinates are dropped.

    Returns
    -------
    pd.DataFrame
        Columns: site_id, first_year, last_year, first_mean, last_mean,
        volume_change, pct_change, latitude, longitude.
    """
    yearly = (
        counts.dropna(subset=["volume"])
        .groupby(["site_id", "year"], as_index=False)["volume"]
        .mean()
        .sort_values(["site_id", "year"])
    )
    if yearly.empty:
        return pd.DataFrame(columns=["site_id", "first_year", "last_year", "first_mean", "last_mean",
                                     "volume_change", "pct_change", "latitude", "longitude"])

    g = yearly.groupby("site_id")
    change = pd.DataFrame({
        "first_year": g["year"].first(),
        "last_year": g["year"].last(),
        "first_mean": g["volume"].first(),
        "last_mean": g["volume"].last(),
    }).reset_index()
    change["volume_change"] = change["last_mean"] - change["first_mean"]
    with np.errstate(divide="ignore", invalid="ignore"):
        pct = 100.0 * change["volume_change"] / change["first_mean"].abs()
    change["pct_change"] = pct.replace([np.inf, -np.inf], np.nan)

    coords = sites[["site_id", "latitude", "longitude"]].drop_duplicates("site_id")
    merged = change.merge(coords, on="site_id", how="inner")
    merged = merged.dropna(subset=["latitude", "longitude"]).reset_index(drop=True)
    if len(merged) < len(change):
        logger.info("%d site(s) without coordinates left out of the density plot.", len(change) - len(merged))
    return merged


def kpss_pval(series: pd.Series) -> float:
    """
    KPSS level-stationarity p-value, NaN when the test cannot be run.

    statsmodels clips the p-value to its lookup table [0.01, 0.1] and warns about
    it; the warning is silenced here.
    """
    from statsmodels.tsa.stattools import kpss

    s = pd.Series(series).dropna()
    if len(s) < 12 or np.isclose(s.std(), 0.0):
        return float("nan")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return float(kpss(s, regression="c", nlags="auto")[1])


def ndiffs(series: pd.Series, alpha: float = 0.05, max_d: int = 2) -> int:
    """
    Number of ordinary differences needed for level stationarity.

    Repeats the KPSS test, differencing once more while the null of stationarity
    is rejected at ``alpha``, up to ``max_d``.
    """
    d = 0
    s = pd.Series(series).dropna()
    while d < max_d:
        p = kpss_pval(s)
        if not np.isfinite(p) or p >= alpha:
            break
        s = s.diff().dropna()
        d += 1
    return d


def seasonal_strength(series: pd.Series, s: int) -> float:
    """
    Strength of seasonality from an STL decomposition, in [0, 1].

    F_s = max(0, 1 - Var(remainder) / Var(seasonal + remainder)). Returns 0 when
    the series is too short for two full seasons.
    """
    from statsmodels.tsa.seasonal import STL

    x = pd.Series(series).dropna().to_numpy(dtype=float)
    if s < 2 or len(x) < 2 * s + 1:
        return 0.0
    res = STL(x, period=s, robust=True).fit()
    denom = np.var(res.seasonal + res.resid)
    if denom <= 0.0:
        return 0.0
    return float(max(0.0, 1.0 - np.var(res.resid) / denom))


def nsdiffs(series: pd.Series, s: int, threshold: float = 0.64, max_D: int = 1) -> int:
    """
    Number of seasonal differences, chosen by STL seasonal strength.

    One seasonal difference is taken while the strength is at least ``threshold``,
    up to ``max_D``.
    """
    D = 0
    x = pd.Series(series).dropna()
    while D < max_D and s > 1 and seasonal_strength(x, s) >= threshold:
        x = x.diff(s).dropna()
        D += 1
    return D
