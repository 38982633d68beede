# traffic_report_src/plotting_utils.py

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.colors import TwoSlopeNorm
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple
import logging

from traffic_report_src.file_utils import ensure_dir

logger = logging.getLogger(__name__)


def plot_site_series(series: pd.Series,
                     out_path: Path,
                     site_id: Optional[str] = None,
                     rolling_window: Optional[int] = 24) -> None:
    """
    Render and save the hourly volume line chart for one site.

    Parameters
    ----------
    series : pd.Series
        Hourly volume with DatetimeIndex
    out_path : Path
        File path to save the rendered PNG (parents are created if missing)
    site_id : str, optional
        Used in the title
    rolling_window : int, optional
        Overlay a centred rolling mean of this many hours (None to skip)
    """
    ensure_dir(out_path.parent)
    fig, ax = plt.subplots(figsize=(11, 4))
    ax.plot(series.index, series.values, color="black", linewidth=0.6, label="hourly volume")
    if rolling_window and len(series) > rolling_window:
        smooth = series.rolling(rolling_window, center=True).mean()
        ax.plot(smooth.index, smooth.values, color="tab:red", linewidth=1.2,
                label=f"{rolling_window}h rolling mean")
        ax.legend(loc="upper left", fontsize=8)
    ax.set_xlabel("Date")
    ax.set_ylabel("Vehicles per hour")
    ax.set_title(f"Hourly traffic volume, site {site_id}" if site_id else "Hourly traffic volume")
    fig.autofmt_xdate()
    plt.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)


def _kde_grid(lon: np.ndarray, lat: np.ndarray, n: int = 100) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Evaluate a Gaussian KDE of the site locations on an n x n lon/lat grid."""
    from scipy.stats import gaussian_kde

    kde = gaussian_kde(np.vstack([lon, lat]))
    pad_x = 0.1 * (lon.max() - lon.min() or 1.0)
    pad_y = 0.1 * (lat.max() - lat.min() or 1.0)
    xx, yy = np.meshgrid(
        np.linspace(lon.min() - pad_x, lon.max() + pad_x, n),
        np.linspace(lat.min() - pad_y, lat.max() + pad_y, n),
    )
    zz = kde(np.vstack([xx.ravel(), yy.ravel()])).reshape(xx.shape)
    return xx, yy, zz


def plot_volume_change_density(change: pd.DataFrame,
                               out_path: Path,
                               value_column: str = "volume_change") -> None:
    """
    2-D density of count sites over their coordinates, colored by volume change.

    The filled contours show where count sites concentrate (Gaussian KDE of
    longitude/latitude); each site is drawn on top, colored on a diverging
    scale centred at zero so increases and decreases read apart.

    Parameters
    ----------
    change : pd.DataFrame
        Output of ``transform_utils.site_volume_change``
    out_path : Path
        Output PNG path
    value_column : str, default="volume_change"
        Column mapped to color

    Notes
    -----
    With fewer than three distinct locations the covariance of the KDE is
    singular; the density layer is then omitted and only the scatter is drawn.
    """
    ensure_dir(out_path.parent)
    df = change.dropna(subset=["latitude", "longitude"])
    fig, ax = plt.subplots(figsize=(7, 6))

    if df.empty:
        ax.text(0.5, 0.5, "no site coordinates", ha="center", va="center", transform=ax.transAxes)
    else:
        lon = df["longitude"].to_numpy(dtype=float)
        lat = df["latitude"].to_numpy(dtype=float)
        if len(np.unique(np.c_[lon, lat], axis=0)) >= 3:
            try:
                xx, yy, zz = _kde_grid(lon, lat)
                cf = ax.contourf(xx, yy, zz, levels=12, cmap="Greys", alpha=0.6)
                fig.colorbar(cf, ax=ax, label="site density", shrink=0.8)
            except np.linalg.LinAlgError as e:
                logger.warning("Density layer skipped, site coordinates are degenerate: %s", e)

        values = df[value_column].fillna(0.0).to_numpy(dtype=float)
        bound = float(np.nanmax(np.abs(values))) if values.size else 0.0
        norm = TwoSlopeNorm(vcenter=0.0, vmin=-(bound or 1.0), vmax=bound or 1.0)
        sc = ax.scatter(lon, lat, c=values, cmap="RdBu_r", norm=norm,
                        edgecolors="black", linewidths=0.4, s=40, zorder=3)
        fig.colorbar(sc, ax=ax, label="change in mean hourly volume", shrink=0.8)

    ax.set_xlabel("Longitude")
    ax.set_ylabel("Latitude")
    ax.set_title("Count sites: density and volume change")
    plt.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)


def plot_series_acf_pacf(series: pd.Series,
                         out_path: Path,
                         lags: int = 48,
                         title: str = "Hourly volume") -> None:
    """
    ACF and PACF panel of a series, used to read candidate model orders.

    ``lags`` is reduced to what the series length supports.
    """
    from statsmodels.graphics.tsaplots import plot_acf, plot_pacf

    ensure_dir(out_path.parent)
    x = series.dropna()
    lags = int(min(lags, max(1, len(x) // 2 - 1)))
    fig, axes = plt.subplots(2, 1, figsize=(9, 6))
    plot_acf(x, ax=axes[0], lags=lags)
    axes[0].set_title(f"ACF: {title}")
    plot_pacf(x, ax=axes[1], lags=lags, method="ywm")
    axes[1].set_title(f"PACF: {title}")
    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)


def plot_forecast_comparison(y_true: pd.Series,
                             forecasts: Dict[str, Sequence[float]],
                             out_path: Path,
                             title: str = "Forecast Comparison",
                             history: Optional[pd.Series] = None,
                             intervals: Optional[Dict[int, Tuple[Sequence[float], Sequence[float]]]] = None,
                             interval_label: str = "") -> None:
    """
    Create a comparison plot of hold-out actuals vs forecasts of several methods.

    Parameters
    ----------
    y_true : pd.Series
        Hold-out actuals with datetime index
    forecasts : Dict[str, Sequence[float]]
        Method name -> forecast values aligned with ``y_true``
    out_path : Path
        Output file path for the plot
    title : str, default="Forecast Comparison"
        Plot title
    history : pd.Series, optional
        Tail of the training data drawn before the hold-out window
    intervals : dict, optional
        Coverage % -> (lower, upper) bands shaded around the forecasts
    interval_label : str
        Name of the method the bands belong to
    """
    ensure_dir(out_path.parent)
    fig, ax = plt.subplots(figsize=(10, 4.5))

    if history is not None and len(history):
        ax.plot(history.index, history.values, color="grey", linewidth=1.0, label="history")
    ax.plot(y_true.index, y_true.values, color="black", linewidth=1.5, label="actual")

    for lvl in sorted(intervals or {}, reverse=True):
        lo, hi = intervals[lvl]
        ax.fill_between(y_true.index, np.asarray(lo, dtype=float), np.asarray(hi, dtype=float),
                        color="tab:blue", alpha=0.12 if lvl >= 90 else 0.22,
                        label=f"{interval_label} {lvl}% interval".strip())

    colors = ["tab:red", "tab:blue", "tab:green", "tab:orange", "tab:purple"]
    for i, (method, values) in enumerate(forecasts.items()):
        color = colors[i % len(colors)]
        ax.plot(y_true.index, np.asarray(values, dtype=float), color=color, linestyle="--", label=method)

    ax.set_ylabel("Vehicles per hour")
    ax.set_title(title)
    ax.legend(fontsize=8)
    fig.autofmt_xdate()
    plt.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
