from dataclasses import replace
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest

import traffic_report_src.forecasting_utils as fu
from traffic_report_src.forecasting_utils import (
    ModelFitError, NoViableModelError, adf_test, auto_sarima, fit_manual_sarima,
    forecast_sarima, kpss_test, naive_forecast, seasonal_naive_forecast, stationarity_table
)
from traffic_report_src.metrics_utils import rmse
from traffic_report_src.transform_utils import (
    difference, ndiffs, nsdiffs, require_complete, split_holdout
)


def _hourly(values, start="2021-01-01"):
    return pd.Series(values, index=pd.date_range(start, periods=len(values), freq="h"), name="volume")


def _arma11(n, phi, theta, seed, burn=200):
    rng = np.random.default_rng(seed)
    e = rng.normal(size=n + burn)
    x = np.zeros(n + burn)
    for t in range(1, n + burn):
        x[t] = phi * x[t - 1] + e[t] + theta * e[t - 1]
    return x[burn:]


def test_forecast_horizons():
    fit = fit_manual_sarima(_hourly(_arma11(200, 0.5, 0.0, seed=1)), (1, 0, 0), (0, 0, 0, 0))

    empty = forecast_sarima(fit, 0)
    assert empty.steps == 0
    assert len(empty.mean) == 0

    fc = forecast_sarima(fit, 12, coverage_levels=[80, 95])
    assert fc.steps == 12
    assert fc.mean.index[0] == fit.fitted.index[-1] + pd.Timedelta(hours=1)
    assert fc.mean.index.is_monotonic_increasing
    assert np.isfinite(fc.mean).all()
    lo80, hi80 = fc.intervals[80]
    lo95, hi95 = fc.intervals[95]
    assert (lo95 <= lo80).all() and (hi80 <= hi95).all()
    assert ((lo80 <= fc.mean) & (fc.mean <= hi80)).all()

    with pytest.raises(ValueError):
        forecast_sarima(fit, -1)


def test_manual_fit_recovers_arma_coefficients():
    series = _hourly(_arma11(6000, 0.6, 0.3, seed=42))
    fit = fit_manual_sarima(series, (1, 0, 1), (0, 0, 0, 0))

    assert abs(fit.params["ar.L1"] - 0.6) <= 0.05
    assert abs(fit.params["ma.L1"] - 0.3) <= 0.05
    assert fit.trend == "c"
    assert np.isfinite([fit.llf, fit.aic, fit.bic, fit.aicc]).all()
    assert fit.aicc >= fit.aic


def test_manual_fit_rejects_missing_values():
    values = _arma11(100, 0.5, 0.0, seed=3)
    values[10] = np.nan
    with pytest.raises(ValueError):
        fit_manual_sarima(_hourly(values), (1, 0, 0), (0, 0, 0, 0))


def test_differencing_burn_in_is_nan():
    rng = np.random.default_rng(7)
    t = np.arange(120)
    series = pd.Series(50 + 0.3 * t + 10 * np.sin(2 * np.pi * t / 12) + rng.normal(0, 1, 120),
                       index=pd.date_range("2010-01-01", periods=120, freq="MS"))
    fit = fit_manual_sarima(series, (0, 1, 0), (0, 1, 0, 12))

    assert fit.burn_in == 13
    assert fit.trend is None
    assert fit.fitted.iloc[:13].isna().all()
    assert fit.residuals.iloc[:13].isna().all()
    assert np.isfinite(fit.residuals.iloc[13:]).all()
    assert np.allclose(fit.residuals.iloc[13:], series.iloc[13:] - fit.fitted.iloc[13:])


def test_optimizer_failure_raises_model_fit_error(monkeypatch):
    class Exploding:
        def __init__(self, *args, **kwargs):
            pass

        def fit(self, *args, **kwargs):
            raise np.linalg.LinAlgError("Schur decomposition solver error")

    monkeypatch.setattr(fu, "SARIMAX", Exploding)
    series = _hourly(_arma11(100, 0.5, 0.0, seed=4))

    with pytest.raises(ModelFitError):
        fit_manual_sarima(series, (1, 0, 0), (0, 0, 0, 0))
    with pytest.raises(NoViableModelError):
        auto_sarima(series, 1, d=0, D=0, strategy="grid", max_p=1, max_q=1, show_progress=False)


def test_auto_selection_on_white_noise_picks_zero_order():
    trials = 40
    picks = 0
    for seed in range(trials):
        series = _hourly(np.random.default_rng(100 + seed).normal(10.0, 1.0, 240))
        res = auto_sarima(series, seasonal_period=1, show_progress=False)
        picks += res.best.order == (0, 0, 0)
    assert picks / trials >= 0.75


def test_auto_stepwise_candidate_table_sorted():
    series = _hourly(_arma11(300, 0.7, 0.0, seed=8))
    res = auto_sarima(series, seasonal_period=1, d=0, D=0, strategy="stepwise",
                      max_p=3, max_q=3, show_progress=False)

    assert res.strategy == "stepwise"
    assert res.best.order[0] >= 1
    assert res.criterion == "bic"
    crit = res.candidates["bic"].to_numpy()
    assert (np.diff(crit) >= 0).all()
    assert res.best.bic == pytest.approx(crit[0])
    assert res.candidates["order"].apply(lambda o: o[0] <= 3 and o[2] <= 3).all()


def test_auto_rejects_unknown_strategy():
    series = _hourly(np.random.default_rng(0).normal(size=50))
    with pytest.raises(ValueError):
        auto_sarima(series, 1, strategy="exhaustive")


def test_seasonal_arima_beats_naive_on_monthly_series():
    rng = np.random.default_rng(2024)
    t = np.arange(120)
    y = pd.Series(50 + 10 * np.sin(2 * np.pi * t / 12) + rng.normal(0, 1, 120),
                  index=pd.date_range("2010-01-01", periods=120, freq="MS"))
    train, test = y.iloc[:108], y.iloc[108:]

    fit = fit_manual_sarima(train, (1, 0, 1), (2, 0, 2, 12))
    fc = forecast_sarima(fit, 12)
    naive = naive_forecast(train, 12)

    assert list(fc.mean.index) == list(test.index)
    assert rmse(test, fc.mean) < rmse(test, naive.mean)


def test_naive_baselines():
    train = _hourly(np.arange(48, dtype=float))
    naive = naive_forecast(train, 3)
    assert naive.mean.tolist() == [47.0, 47.0, 47.0]
    assert naive.mean.index[0] == train.index[-1] + pd.Timedelta(hours=1)

    snaive = seasonal_naive_forecast(train, 30, 24)
    assert snaive.mean.iloc[:24].tolist() == list(np.arange(24, 48, dtype=float))
    assert snaive.mean.iloc[24:].tolist() == list(np.arange(24, 30, dtype=float))

    assert naive_forecast(train, 0).steps == 0


def test_stationarity_tests_flag_direction():
    rng = np.random.default_rng(9)
    noise = rng.normal(size=400)
    trending = np.arange(400) * 0.5 + rng.normal(size=400)

    assert adf_test(noise).stationary
    assert not kpss_test(trending).stationary


def test_differencing_order_rules():
    rng = np.random.default_rng(12)
    walk = np.cumsum(rng.normal(size=500))
    assert ndiffs(pd.Series(walk)) >= 1

    t = np.arange(24 * 20)
    seasonal = pd.Series(100 + 30 * np.sin(2 * np.pi * t / 24) + rng.normal(0, 1, len(t)))
    assert nsdiffs(seasonal, 24) == 1
    assert nsdiffs(pd.Series(rng.normal(size=24 * 20)), 24) == 0


def test_split_holdout_and_require_complete():
    series = _hourly(np.arange(10, dtype=float))
    train, test = split_holdout(series, 3)
    assert len(train) == 7 and len(test) == 3
    assert test.index[0] == train.index[-1] + pd.Timedelta(hours=1)

    train, test = split_holdout(series, 0)
    assert len(train) == 10 and test.empty

    with pytest.raises(ValueError):
        split_holdout(series, 10)
    with pytest.raises(ValueError):
        split_holdout(series, -1)

    gappy = series.copy()
    gappy.iloc[4] = np.nan
    with pytest.raises(ValueError):
        require_complete(gappy)
    with pytest.raises(ValueError):
        require_complete(series.iloc[0:0])


def test_difference_drops_burn_in():
    series = _hourly(np.arange(60, dtype=float) ** 2)
    assert len(difference(series, d=1)) == 59
    seasonal = difference(series, d=1, D=1, s=24)
    assert len(seasonal) == 60 - 25
    assert np.allclose(difference(series, d=2), 2.0)


def test_stationarity_table_covers_level_and_differences():
    rng = np.random.default_rng(5)
    walk = _hourly(np.cumsum(rng.normal(size=24 * 10)))
    table = stationarity_table(walk, 24)

    assert set(table["series"]) == {"level", "diff(1)", "seasonal diff(24)"}
    assert set(table["test"]) == {"ADF", "KPSS"}
    assert len(table) == 6
    diff_adf = table[(table["series"] == "diff(1)") & (table["test"] == "ADF")].iloc[0]
    assert diff_adf["stationary"]


def _record_candidates(monkeypatch):
    visited = []
    real = fu._try_candidate

    def recording(series, pqPQ, *args, **kwargs):
        visited.append(pqPQ)
        return real(series, pqPQ, *args, **kwargs)

    monkeypatch.setattr(fu, "_try_candidate", recording)
    return visited


def test_stepwise_fits_all_four_start_models(monkeypatch):
    visited = _record_candidates(monkeypatch)
    t = np.arange(4 * 60)
    rng = np.random.default_rng(21)
    series = _hourly(20 + 5 * np.sin(2 * np.pi * t / 4) + rng.normal(0, 1, len(t)))

    auto_sarima(series, 4, d=0, D=0, strategy="stepwise", show_progress=False)

    assert visited[:4] == [(2, 2, 1, 1), (0, 0, 0, 0), (1, 0, 1, 0), (0, 1, 0, 1)]
    assert len(visited) == len(set(visited))


def test_grid_respects_max_order(monkeypatch):
    visited = _record_candidates(monkeypatch)
    series = _hourly(np.random.default_rng(2).normal(size=120))

    auto_sarima(series, 1, d=0, D=0, strategy="grid", max_p=3, max_q=3, max_order=2,
                show_progress=False)

    assert visited
    assert all(p + q <= 2 for p, q, _, _ in visited)
    assert (2, 0, 0, 0) in visited and (3, 0, 0, 0) not in visited


def test_stepwise_progress_counts_fitted_models(monkeypatch):
    visited = _record_candidates(monkeypatch)
    updates = []

    class RecordingBar:
        def __init__(self, *args, **kwargs):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def update(self, n=1):
            updates.append(n)

    monkeypatch.setattr(fu, "tqdm", RecordingBar)
    series = _hourly(_arma11(300, 0.7, 0.0, seed=8))

    auto_sarima(series, 1, d=0, D=0, strategy="stepwise", max_p=2, max_q=2)

    assert sum(updates) == len(visited) - 4


def test_near_unit_root_candidates_are_not_eligible():
    fit = fit_manual_sarima(_hourly(_arma11(200, 0.5, 0.0, seed=1)), (1, 0, 0), (0, 0, 0, 0))
    empty = np.array([])

    near_unit = replace(fit, results=SimpleNamespace(
        arparams=np.array([0.995]), maparams=empty, seasonalarparams=empty, seasonalmaparams=empty))
    assert fu._min_root_modulus(near_unit) < fu.MIN_ROOT_MODULUS

    seasonal_ar = replace(fit, results=SimpleNamespace(
        arparams=np.array([0.5]), maparams=np.array([-0.3]),
        seasonalarparams=np.array([0.95]), seasonalmaparams=empty))
    assert fu._min_root_modulus(seasonal_ar) == pytest.approx(1 / 0.95)

    white = replace(fit, results=SimpleNamespace(
        arparams=empty, maparams=empty, seasonalarparams=empty, seasonalmaparams=empty))
    assert fu._min_root_modulus(white) == np.inf
