import numpy as np
import pandas as pd
import pytest
from scipy.stats import binom

from traffic_report_src.metrics_utils import ljung_box, mae, rmse, score_forecasts


def test_rmse_zero_iff_exact():
    y = np.array([1.0, 2.0, 3.0])
    assert rmse(y, y) == 0.0
    assert rmse(y, y + np.array([0.0, 0.0, 1e-6])) > 0.0


def test_rmse_known_value_and_non_negative():
    assert np.isclose(rmse([0.0, 0.0], [3.0, -4.0]), np.sqrt(12.5))
    rng = np.random.default_rng(3)
    for _ in range(20):
        a, b = rng.normal(size=10), rng.normal(size=10)
        assert rmse(a, b) >= 0.0


def test_rmse_ignores_pairs_with_missing_values():
    actual = [1.0, np.nan, 3.0, 4.0]
    predicted = [1.0, 100.0, np.nan, 6.0]
    # only pairs 0 and 3 are complete
    assert np.isclose(rmse(actual, predicted), np.sqrt((0.0 + 4.0) / 2))
    assert np.isclose(mae(actual, predicted), 1.0)


def test_rmse_all_missing_is_nan():
    assert np.isnan(rmse([np.nan, 1.0], [2.0, np.nan]))
    assert np.isnan(rmse([], []))


def test_rmse_length_mismatch_raises():
    with pytest.raises(ValueError):
        rmse([1.0, 2.0], [1.0])


def test_ljung_box_white_noise_passes_at_nominal_rate():
    rng = np.random.default_rng(20240101)
    trials = 600
    passes = sum(ljung_box(rng.normal(size=1000), lag=24).adequate for _ in range(trials))
    # one-sided 99.9% binomial bound for a true pass rate of 95%
    assert passes >= binom.ppf(0.001, trials, 0.95)


def test_ljung_box_detects_autocorrelation():
    rng = np.random.default_rng(5)
    e = rng.normal(size=500)
    x = np.zeros(500)
    for t in range(1, 500):
        x[t] = 0.7 * x[t - 1] + e[t]
    res = ljung_box(x, lag=10)
    assert res.p_value < 0.01
    assert not res.adequate


def test_ljung_box_drops_burn_in_and_adjusts_df():
    rng = np.random.default_rng(11)
    resid = np.r_[np.full(24, np.nan), rng.normal(size=200)]
    res = ljung_box(resid, lag=24, model_df=4)
    assert res.lag == 24
    assert res.model_df == 4
    assert 0.0 <= res.p_value <= 1.0

    saturated = ljung_box(resid, lag=3, model_df=4)
    assert np.isnan(saturated.p_value)
    assert not saturated.adequate


def test_score_forecasts_sorts_by_rmse_and_reports_relative():
    y = pd.Series([10.0, 12.0, 14.0])
    scores = score_forecasts(y, {"naive": [10.0, 10.0, 10.0], "good": [10.0, 12.0, 13.0]})

    assert scores["method"].tolist() == ["good", "naive"]
    assert "RMSE_vs_naive" in scores.columns
    assert np.isclose(scores.loc[scores["method"] == "naive", "RMSE_vs_naive"].iloc[0], 1.0)
