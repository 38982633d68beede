# traffic_report_src/forecasting_utils.py

import logging
import warnings
from dataclasses import dataclass, field
from itertools import product
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pandas.tseries.frequencies import to_offset
from tqdm.auto import tqdm

from statsmodels.tools.sm_exceptions import ConvergenceWarning
from statsmodels.tsa.statespace.sarimax import SARIMAX
from statsmodels.tsa.stattools import adfuller, kpss

from traffic_report_src.transform_utils import difference, ndiffs, nsdiffs, require_complete

logger = logging.getLogger(__name__)

Order = Tuple[int, int, int]
SeasonalOrder = Tuple[int, int, int, int]

CRITERIA = ("aicc", "aic", "bic")
STRATEGIES = ("stepwise", "grid")
# Candidates with an AR or MA root closer to the unit circle are rejected
MIN_ROOT_MODULUS = 1.01


class ModelFitError(Exception):
    """Raised when the likelihood optimizer fails numerically."""


class NoViableModelError(Exception):
    """Raised when every candidate of an automatic order search fails to fit."""


@dataclass(frozen=True)
class StationarityResult:
    test: str
    statistic: float
    p_value: float
    lags: int
    stationary: bool


@dataclass(frozen=True)
class FittedSarima:
    """
    A fitted seasonal ARIMA model.

    ``fitted`` and ``residuals`` are aligned with the input series; their first
    ``d + s*D`` entries are NaN because no prediction exists until the
    differencing operators have enough history.
    """
    order: Order
    seasonal_order: SeasonalOrder
    trend: Optional[str]
    params: pd.Series
    fitted: pd.Series
    residuals: pd.Series
    llf: float
    aic: float
    bic: float
    aicc: float
    converged: bool
    warnings: Tuple[str, ...] = ()
    results: object = field(default=None, repr=False, compare=False)

    @property
    def burn_in(self) -> int:
        return self.order[1] + self.seasonal_order[3] * self.seasonal_order[1]

    @property
    def n_params(self) -> int:
        """Number of ARMA coefficients plus one for a trend term."""
        p, _, q = self.order
        P, _, Q, _ = self.seasonal_order
        return p + q + P + Q + (1 if self.trend else 0)

    def criterion(self, name: str) -> float:
        return float(getattr(self, name))

    def label(self) -> str:
        return f"SARIMA{self.order}x{self.seasonal_order}"


@dataclass(frozen=True)
class Forecast:
    """Point forecasts for steps 1..h with optional (lower, upper) bands keyed by coverage %."""
    mean: pd.Series
    intervals: Dict[int, Tuple[pd.Series, pd.Series]] = field(default_factory=dict)

    @property
    def steps(self) -> int:
        return len(self.mean)


@dataclass(frozen=True)
class AutoSarimaResult:
    best: FittedSarima
    candidates: pd.DataFrame
    criterion: str
    strategy: str


def adf_test(series: Union[pd.Series, np.ndarray], alpha: float = 0.05) -> StationarityResult:
    """
    Run the Augmented Dickey-Fuller (ADF) test for unit roots.

    Parameters
    ----------
    series : Union[pd.Series, np.ndarray]
        Input series. NaNs are dropped prior to testing.
    alpha : float, default=0.05
        Significance level for the ``stationary`` flag

    Returns
    -------
    StationarityResult
        ``stationary`` is True when the unit-root null is rejected.

    Notes
    -----
    - ADF null hypothesis: the series has a unit root (non-stationary)
    - Lower p-values (< alpha) suggest rejection of null (series is stationary)
    """
    res = adfuller(pd.Series(series).dropna(), autolag="AIC")
    stat, pval, lags = float(res[0]), float(res[1]), int(res[2])
    return StationarityResult("ADF", stat, pval, lags, pval < alpha)


def kpss_test(series: Union[pd.Series, np.ndarray], alpha: float = 0.05) -> StationarityResult:
    """
    Run the KPSS test for level stationarity.

    KPSS reverses the ADF hypotheses: the null is stationarity, so
    ``stationary`` is True when the p-value is at least ``alpha``. statsmodels
    interpolates p-values from a table bounded to [0.01, 0.1]; the boundary
    warning is suppressed.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        stat, pval, lags, _ = kpss(pd.Series(series).dropna(), regression="c", nlags="auto")
    return StationarityResult("KPSS", float(stat), float(pval), int(lags), float(pval) >= alpha)


def stationarity_table(series: pd.Series, s: int, alpha: float = 0.05) -> pd.DataFrame:
    """
    ADF and KPSS on the level, first difference and seasonal difference.

    Results are for reporting only; a non-stationary verdict never stops the run.
    """
    variants = {"level": series, "diff(1)": difference(series, d=1)}
    if s > 1 and len(series) > 2 * s:
        variants[f"seasonal diff({s})"] = difference(series, d=0, D=1, s=s)

    rows = []
    for name, x in variants.items():
        for test in (adf_test, kpss_test):
            r = test(x, alpha=alpha)
            rows.append({
                "series": name,
                "test": r.test,
                "statistic": r.statistic,
                "p_value": r.p_value,
                "lags": r.lags,
                "stationary": r.stationary,
            })
    return pd.DataFrame(rows)


def default_trend(d: int, D: int) -> Optional[str]:
    """Constant for undifferenced models, none otherwise."""
    return "c" if d + D == 0 else None


def _fit_sarima(series: pd.Series,
                order: Order,
                seasonal_order: SeasonalOrder,
                trend: Optional[str]) -> FittedSarima:
    """Fit one SARIMAX specification and collect the warnings it raises."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            res = SARIMAX(
                series,
                order=order,
                seasonal_order=seasonal_order,
                trend=trend,
                simple_differencing=False,
            ).fit(disp=False)
        except (np.linalg.LinAlgError, ValueError, OverflowError) as e:
            raise ModelFitError(f"SARIMA{order}x{seasonal_order} failed to fit: {e}") from e

    converged = bool(res.mle_retvals.get("converged", True)) if res.mle_retvals else True
    messages = []
    for w in caught:
        if issubclass(w.category, ConvergenceWarning):
            converged = False
        messages.append(f"{w.category.__name__}: {w.message}")

    fitted = pd.Series(np.asarray(res.fittedvalues, dtype=float), index=series.index, name="fitted")
    burn_in = order[1] + seasonal_order[3] * seasonal_order[1]
    if burn_in:
        fitted.iloc[:burn_in] = np.nan
    residuals = (series.astype(float) - fitted).rename("residuals")

    return FittedSarima(
        order=tuple(int(v) for v in order),
        seasonal_order=tuple(int(v) for v in seasonal_order),
        trend=trend,
        params=pd.Series(np.asarray(res.params, dtype=float), index=res.model.param_names),
        fitted=fitted,
        residuals=residuals,
        llf=float(res.llf),
        aic=float(res.aic),
        bic=float(res.bic),
        aicc=float(res.aicc),
        converged=converged,
        warnings=tuple(messages),
        results=res,
    )


def fit_manual_sarima(series: pd.Series,
                      order: Order,
                      seasonal_order: SeasonalOrder,
                      trend: Optional[str] = "auto") -> FittedSarima:
    """
    Fit a seasonal ARIMA with a fixed, user-chosen order by Gaussian maximum likelihood.

    Parameters
    ----------
    series : pd.Series
        Complete series (no NaN)
    order : Tuple[int, int, int]
        (p, d, q)
    seasonal_order : Tuple[int, int, int, int]
        (P, D, Q, s)
    trend : str or None, default="auto"
        statsmodels trend spec; "auto" picks a constant when d + D == 0

    Returns
    -------
    FittedSarima

    Raises
    ------
    ValueError
        If the series contains missing values or an order is negative.
    ModelFitError
        If the optimizer fails numerically.

    Notes
    -----
    Non-convergence is logged and flagged through ``converged``; the fit is
    not retried. Non-stationary or non-invertible starting parameters only
    produce warnings.
    """
    require_complete(series)
    if any(int(v) < 0 for v in (*order, *seasonal_order)):
        raise ValueError(f"Model orders must be non-negative, got {order} x {seasonal_order}")
    if trend == "auto":
        trend = default_trend(order[1], seasonal_order[1])

    fit = _fit_sarima(series, tuple(order), tuple(seasonal_order), trend)
    for msg in fit.warnings:
        logger.warning("%s: %s", fit.label(), msg)
    if not fit.converged:
        logger.warning("%s: optimizer did not converge; estimates may be unreliable.", fit.label())
    logger.info("%s fitted: llf=%.2f AIC=%.2f BIC=%.2f AICc=%.2f",
                fit.label(), fit.llf, fit.aic, fit.bic, fit.aicc)
    return fit


def _min_root_modulus(fit: FittedSarima) -> float:
    """Smallest root modulus over the AR, MA and seasonal AR, MA lag polynomials."""
    res = fit.results
    polys = [
        np.r_[1.0, -np.asarray(getattr(res, "arparams", []), dtype=float)],
        np.r_[1.0, np.asarray(getattr(res, "maparams", []), dtype=float)],
        np.r_[1.0, -np.asarray(getattr(res, "seasonalarparams", []), dtype=float)],
        np.r_[1.0, np.asarray(getattr(res, "seasonalmaparams", []), dtype=float)],
    ]
    moduli = [np.abs(np.roots(c[::-1])) for c in polys if len(c) > 1]
    moduli = [m for m in moduli if m.size]
    return float(np.min(np.concatenate(moduli))) if moduli else np.inf


def _try_candidate(series: pd.Series,
                   pqPQ: Tuple[int, int, int, int],
                   d: int,
                   D: int,
                   s: int,
                   trend: Optional[str],
                   criterion: str) -> Optional[FittedSarima]:
    p, q, P, Q = pqPQ
    try:
        fit = _fit_sarima(series, (p, d, q), (P, D, Q, s), trend)
    except ModelFitError as e:
        logger.debug("Skipping candidate %s: %s", pqPQ, e)
        return None
    if not np.isfinite(fit.criterion(criterion)):
        logger.debug("Skipping candidate %s: non-finite %s", pqPQ, criterion)
        return None
    if _min_root_modulus(fit) < MIN_ROOT_MODULUS:
        logger.debug("Skipping candidate %s: root near the unit circle", pqPQ)
        return None
    return fit


def _candidate_ok(pqPQ, bounds: Dict[str, int], seasonal: bool, check_total: bool = True) -> bool:
    """Per-term bounds always apply; ``max_order`` only limits the grid search."""
    p, q, P, Q = pqPQ
    if min(pqPQ) < 0:
        return False
    if p > bounds["max_p"] or q > bounds["max_q"]:
        return False
    if P > bounds["max_P"] or Q > bounds["max_Q"]:
        return False
    if not seasonal and (P or Q):
        return False
    return not check_total or p + q + P + Q <= bounds["max_order"]


def _stepwise_neighbours(pqPQ: Tuple[int, int, int, int]) -> List[Tuple[int, int, int, int]]:
    """Single and paired +/-1 moves used by the Hyndman-Khandakar search."""
    p, q, P, Q = pqPQ
    moves = []
    for dp, dq, dP, dQ in (
        (-1, 0, 0, 0), (1, 0, 0, 0), (0, -1, 0, 0), (0, 1, 0, 0),
        (-1, -1, 0, 0), (1, 1, 0, 0),
        (0, 0, -1, 0), (0, 0, 1, 0), (0, 0, 0, -1), (0, 0, 0, 1),
        (0, 0, -1, -1), (0, 0, 1, 1),
    ):
        moves.append((p + dp, q + dq, P + dP, Q + dQ))
    return moves


def _score_key(fit: FittedSarima, criterion: str) -> Tuple[float, int]:
    return fit.criterion(criterion), fit.n_params


def auto_sarima(series: pd.Series,
                seasonal_period: int,
                d: Optional[int] = None,
                D: Optional[int] = None,
                strategy: str = "stepwise",
                criterion: str = "bic",
                max_p: int = 5,
                max_q: int = 5,
                max_P: int = 2,
                max_Q: int = 2,
                max_d: int = 2,
                max_D: int = 1,
                max_order: int = 5,
                stepwise_max_models: int = 94,
                show_progress: bool = True) -> AutoSarimaResult:
    """
    Select a seasonal ARIMA order automatically by information criterion.

    Differencing orders default to the KPSS (``ndiffs``) and seasonal-strength
    (``nsdiffs``) rules. ``strategy="stepwise"`` runs a Hyndman-Khandakar
    neighbourhood search from four starting models and stops once no neighbour
    improves the criterion; ``strategy="grid"`` fits every (p, q, P, Q) with
    total order at most ``max_order``. Candidates whose AR or MA polynomials have
    a root with modulus below ``MIN_ROOT_MODULUS`` are not eligible.

    Parameters
    ----------
    series : pd.Series
        Complete series (no NaN)
    seasonal_period : int
        Seasonal period s; values below 2 disable the seasonal part
    d, D : int, optional
        Fixed differencing orders; estimated when None
    strategy : {"stepwise", "grid"}
    criterion : {"bic", "aicc", "aic"}
        Selection criterion; BIC by default
    max_p, max_q, max_P, max_Q : int
        Per-term bounds for both strategies
    max_order : int
        Bound on p + q + P + Q for the grid search
    max_d, max_D : int
        Upper bounds for the differencing rules
    stepwise_max_models : int
        Cap on distinct models visited by the stepwise search

    Returns
    -------
    AutoSarimaResult
        Best fit and the table of all successfully fitted candidates, sorted by
        criterion then parameter count.

    Raises
    ------
    ValueError
        For missing values, unknown strategy or criterion.
    NoViableModelError
        If no candidate could be fitted.
    """
    require_complete(series)
    if strategy not in STRATEGIES:
        raise ValueError(f"strategy must be one of {STRATEGIES}, got {strategy!r}")
    if criterion not in CRITERIA:
        raise ValueError(f"criterion must be one of {CRITERIA}, got {criterion!r}")

    seasonal = seasonal_period > 1
    s = int(seasonal_period) if seasonal else 0
    if d is None:
        d = ndiffs(series, max_d=max_d)
    if D is None:
        D = nsdiffs(series, s, max_D=max_D) if seasonal else 0
    if not seasonal:
        D = 0
    trend = default_trend(d, D)
    bounds = {"max_p": max_p, "max_q": max_q, "max_P": max_P if seasonal else 0,
              "max_Q": max_Q if seasonal else 0, "max_order": max_order}
    logger.info("Auto order search (%s, %s): d=%d D=%d s=%d", strategy, criterion, d, D, s)

    fits: Dict[Tuple[int, int, int, int], Optional[FittedSarima]] = {}

    def visit(cands):
        for c in cands:
            if c not in fits and _candidate_ok(c, bounds, seasonal, check_total=strategy == "grid"):
                fits[c] = _try_candidate(series, c, d, D, s, trend, criterion)

    if strategy == "grid":
        grid = [c for c in product(range(max_p + 1), range(max_q + 1),
                                   range(bounds["max_P"] + 1), range(bounds["max_Q"] + 1))
                if _candidate_ok(c, bounds, seasonal)]
        for c in tqdm(grid, desc="Grid search SARIMA", disable=not show_progress):
            visit([c])
    else:
        starts = [(2, 2, 1, 1), (0, 0, 0, 0), (1, 0, 1, 0), (0, 1, 0, 1)]
        if not seasonal:
            starts = [(p, q, 0, 0) for p, q, _, _ in starts]
        visit(starts)
        ok = {c: f for c, f in fits.items() if f is not None}
        if ok:
            current = min(ok, key=lambda c: _score_key(ok[c], criterion))
            with tqdm(desc="Stepwise search SARIMA", disable=not show_progress) as bar:
                while len(fits) < stepwise_max_models:
                    neighbours = [c for c in _stepwise_neighbours(current) if c not in fits]
                    n_before = len(fits)
                    visit(neighbours[: max(0, stepwise_max_models - len(fits))])
                    bar.update(len(fits) - n_before)
                    ok = {c: f for c, f in fits.items() if f is not None}
                    best = min(ok, key=lambda c: _score_key(ok[c], criterion))
                    if best == current:
                        break
                    current = best

    ok = {c: f for c, f in fits.items() if f is not None}
    if not ok:
        raise NoViableModelError(f"None of the {len(fits)} candidate models could be fitted.")

    rows = []
    for (p, q, P, Q), f in ok.items():
        rows.append({
            "order": f.order,
            "seasonal_order": f.seasonal_order,
            "aic": f.aic,
            "bic": f.bic,
            "aicc": f.aicc,
            "n_params": f.n_params,
            "converged": f.converged,
        })
    table = (pd.DataFrame(rows)
             .sort_values([criterion, "n_params"], ascending=True)
             .reset_index(drop=True))

    best_key = min(ok, key=lambda c: _score_key(ok[c], criterion))
    best = ok[best_key]
    logger.info("Selected %s with %s=%.2f after %d candidates (%d failed).",
                best.label(), criterion, best.criterion(criterion), len(fits), len(fits) - len(ok))
    if not best.converged:
        logger.warning("%s: optimizer did not converge; estimates may be unreliable.", best.label())
    return AutoSarimaResult(best=best, candidates=table, criterion=criterion, strategy=strategy)


def future_index(index: pd.Index, steps: int) -> pd.Index:
    """
    Index for ``steps`` periods after ``index``.

    Continues a DatetimeIndex at its (possibly inferred) frequency; anything
    else gets a continuing integer range.
    """
    if isinstance(index, pd.DatetimeIndex) and len(index) > 0:
        freq = index.freq or (pd.infer_freq(index) if len(index) >= 3 else None)
        if freq is not None:
            offset = to_offset(freq)
            return pd.date_range(index[-1] + offset, periods=steps, freq=offset)
    return pd.RangeIndex(len(index), len(index) + steps)


def forecast_sarima(fit: FittedSarima,
                    steps: int,
                    coverage_levels: Sequence[int] = ()) -> Forecast:
    """
    Forecast ``steps`` periods past the end of the fitted series.

    Parameters
    ----------
    fit : FittedSarima
        Result of ``fit_manual_sarima`` or ``auto_sarima``
    steps : int
        Horizon h; 0 returns an empty forecast
    coverage_levels : Sequence[int]
        Interval coverages in percent, e.g. (80, 95)

    Returns
    -------
    Forecast
        Mean ordered by step 1..h, indexed after the last fitted observation.
    """
    if steps < 0:
        raise ValueError(f"Forecast horizon must be non-negative, got {steps}")
    idx = future_index(fit.fitted.index, steps)
    if steps == 0:
        empty = pd.Series([], index=idx, dtype=float, name="forecast")
        return Forecast(mean=empty, intervals={lvl: (empty, empty) for lvl in coverage_levels})

    fc = fit.results.get_forecast(steps=steps)
    mean = pd.Series(np.asarray(fc.predicted_mean, dtype=float), index=idx, name="forecast")
    intervals: Dict[int, Tuple[pd.Series, pd.Series]] = {}
    for lvl in coverage_levels:
        alpha = 1.0 - (lvl / 100.0)
        ci = np.asarray(fc.conf_int(alpha=alpha), dtype=float)
        intervals[int(lvl)] = (
            pd.Series(ci[:, 0], index=idx, name=f"lower_{lvl}"),
            pd.Series(ci[:, 1], index=idx, name=f"upper_{lvl}"),
        )
    return Forecast(mean=mean, intervals=intervals)


def naive_forecast(train: pd.Series, steps: int) -> Forecast:
    """Repeat the last training value ``steps`` times."""
    if steps < 0:
        raise ValueError(f"Forecast horizon must be non-negative, got {steps}")
    last = float(train.dropna().iloc[-1]) if steps else np.nan
    idx = future_index(train.index, steps)
    return Forecast(mean=pd.Series(np.full(steps, last), index=idx, name="naive"))


def seasonal_naive_forecast(train: pd.Series, steps: int, s: int) -> Forecast:
    """Repeat the last full season of the training data."""
    if steps < 0:
        raise ValueError(f"Forecast horizon must be non-negative, got {steps}")
    if s < 1 or len(train) < s:
        raise ValueError(f"Need at least one full season (s={s}) of training data.")
    last_season = train.to_numpy(dtype=float)[-s:]
    values = np.resize(last_season, steps)
    idx = future_index(train.index, steps)
    return Forecast(mean=pd.Series(values, index=idx, name="seasonal_naive"))
