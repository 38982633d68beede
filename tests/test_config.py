import argparse

import pytest

import config.manager as cm
import traffic_report_src.config_utils as cu
from traffic_report_src.main import _auto_search_kwargs
from config import ConfigurationError, ConfigurationManager
from traffic_report_src.parsing_utils import (
    parse_intervals_arg, parse_order_arg, seasonal_order_with_period, validate_log_level,
    validate_strategy
)


def test_default_configuration_loads_and_validates():
    cfg = ConfigurationManager()
    assert cfg.get("model.seasonal_period") == 24
    assert cfg.get("model.manual.order") == [1, 0, 1]
    assert cfg.get("model.auto.strategy") == "stepwise"
    assert cfg.get("evaluation.holdout") == 24
    assert cfg.get("no.such.key", "fallback") == "fallback"
    assert cfg.validate_configuration() == {}


def test_validation_reports_bad_values(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(
        "model:\n"
        "  seasonal_period: 0\n"
        "  auto:\n"
        "    strategy: exhaustive\n"
        "evaluation:\n"
        "  alpha: 2\n",
        encoding="utf-8",
    )
    errors = ConfigurationManager(path).validate_configuration()
    assert set(errors) == {"model", "evaluation"}
    assert len(errors["model"]) == 2


def test_missing_or_invalid_yaml_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigurationManager(tmp_path / "absent.yaml")

    broken = tmp_path / "broken.yaml"
    broken.write_text("model: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ConfigurationManager(broken)


def test_env_var_selects_config_file(tmp_path, monkeypatch):
    path = tmp_path / "alt.yaml"
    path.write_text("model:\n  seasonal_period: 168\n", encoding="utf-8")
    monkeypatch.setenv("TRAFFIC_REPORT_CONFIG", str(path))
    assert ConfigurationManager().get("model.seasonal_period") == 168


def test_cli_overrides_config_overrides_default(tmp_path, monkeypatch):
    path = tmp_path / "report.yaml"
    path.write_text("evaluation:\n  holdout: 48\n", encoding="utf-8")
    monkeypatch.setattr(cu, "config_manager", None)
    monkeypatch.setattr(cm, "_config_instance", None)
    cu.initialize_config(path)

    assert cu.get_config_value("evaluation.holdout", 24) == 48
    args = argparse.Namespace(holdout=12)
    assert cu.get_config_value("evaluation.holdout", 24, args, "holdout") == 12
    args = argparse.Namespace(holdout=None)
    assert cu.get_config_value("evaluation.holdout", 24, args, "holdout") == 48
    assert cu.get_config_value("evaluation.alpha", 0.05) == 0.05


def test_unreadable_config_falls_back_to_defaults(tmp_path, monkeypatch):
    monkeypatch.setattr(cu, "config_manager", None)
    monkeypatch.setattr(cm, "_config_instance", None)
    assert cu.initialize_config(tmp_path / "absent.yaml") is None
    assert cu.get_config_value("evaluation.holdout", 24) == 24


def test_parse_order_arg():
    assert parse_order_arg("1,0,1", 3) == (1, 0, 1)
    assert parse_order_arg("(2, 1, 0)", 3) == (2, 1, 0)
    assert parse_order_arg([2, 0, 2, 24], 4) == (2, 0, 2, 24)
    assert parse_order_arg(None, 3) is None
    with pytest.raises(ValueError):
        parse_order_arg("1,0", 3)
    with pytest.raises(ValueError):
        parse_order_arg("1,-1,0", 3)
    with pytest.raises(ValueError):
        parse_order_arg("a,b,c", 3)


def test_seasonal_order_fills_period():
    assert seasonal_order_with_period([2, 0, 2], 24) == (2, 0, 2, 24)
    assert seasonal_order_with_period("1,1,1", 12) == (1, 1, 1, 12)
    assert seasonal_order_with_period("1,0,1,24", 24) == (1, 0, 1, 24)
    assert seasonal_order_with_period("0,0,0,0", 24) == (0, 0, 0, 0)
    with pytest.raises(ValueError):
        seasonal_order_with_period("1,0,1,168", 24)


def test_small_parsers():
    assert parse_intervals_arg("95,80,80") == [80, 95]
    assert parse_intervals_arg("150") == [80, 95]
    assert parse_intervals_arg("x") == [80, 95]
    assert validate_strategy("Grid") == "grid"
    with pytest.raises(argparse.ArgumentTypeError):
        validate_strategy("random")
    assert validate_log_level("debug") == "DEBUG"
    with pytest.raises(ValueError):
        validate_log_level("loud")


def test_auto_search_settings_come_from_config_block(tmp_path, monkeypatch):
    path = tmp_path / "report.yaml"
    path.write_text(
        "model:\n"
        "  auto:\n"
        "    strategy: grid\n"
        "    criterion: aicc\n"
        "    max_p: 2\n"
        "    max_order: 3\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(cu, "config_manager", None)
    monkeypatch.setattr(cm, "_config_instance", None)
    cu.initialize_config(path)

    assert cu.get_auto_search_settings()["max_p"] == 2
    search = _auto_search_kwargs(argparse.Namespace(auto_strategy=None))
    assert search["strategy"] == "grid"
    assert search["criterion"] == "aicc"
    assert search["max_p"] == 2 and search["max_order"] == 3
    assert search["max_q"] == 5 and search["stepwise_max_models"] == 94

    search = _auto_search_kwargs(argparse.Namespace(auto_strategy="stepwise"))
    assert search["strategy"] == "stepwise"


def test_auto_search_defaults_without_config(monkeypatch):
    monkeypatch.setattr(cu, "config_manager", None)
    assert cu.get_auto_search_settings() == {}
    search = _auto_search_kwargs(None)
    assert search["strategy"] == "stepwise"
    assert search["criterion"] == "bic"
    assert search["max_P"] == 2
