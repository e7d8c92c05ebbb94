from __future__ import annotations

import re

import pytest

from prom_bundle.core.config import BundleOptions, load_options, load_settings
from prom_bundle.core.errors import ConfigurationError

_PROM_VARS = (
    "PROM_ALLOW",
    "PROM_DENY",
    "PROM_EXCLUDE_PATHS",
    "PROM_BUCKETS",
    "PROM_INCLUDE_METHOD",
    "PROM_INCLUDE_PATH",
    "PROM_AUTOREGISTER",
    "PROM_METRIC_NAME",
    "PROM_METRICS_PATH",
    "PROM_SAMPLE_INTERVAL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _PROM_VARS + ("LOG_LEVEL", "LOG_JSON"):
        monkeypatch.delenv(name, raising=False)


# ---- settings ----


def test_load_settings_defaults() -> None:
    settings = load_settings()
    assert settings.log_level == "info"
    assert settings.log_json is False


def test_load_settings_normalizes_case(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "  DEBUG ")
    monkeypatch.setenv("LOG_JSON", "True")
    settings = load_settings()
    assert settings.log_level == "debug"
    assert settings.log_json is True


def test_load_settings_rejects_invalid_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(ValueError, match="LOG_LEVEL must be debug|info|warning|error"):
        load_settings()


def test_load_settings_rejects_invalid_bool(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_JSON", "maybe")
    with pytest.raises(ValueError, match="LOG_JSON must be a boolean"):
        load_settings()


# ---- BundleOptions ----


def test_options_defaults() -> None:
    options = BundleOptions()
    assert options.allow == ()
    assert options.deny == ()
    assert options.buckets == (0.003, 0.03, 0.1, 0.3, 1.5, 10.0)
    assert options.autoregister is True
    assert options.metrics_path == "/metrics"
    assert options.sample_interval == 15.0


def test_options_allow_and_deny_conflict() -> None:
    with pytest.raises(ConfigurationError, match="allow and deny"):
        BundleOptions(allow=("up",), deny=("process_cpu",))


def test_options_lists_become_tuples() -> None:
    options = BundleOptions(allow=["up"], exclude_paths=["/health"])  # type: ignore[arg-type]
    assert options.allow == ("up",)
    assert options.exclude_paths == ("/health",)


def test_options_single_pattern_is_wrapped() -> None:
    options = BundleOptions(allow="up")  # type: ignore[arg-type]
    assert options.allow == ("up",)


def test_options_sort_buckets() -> None:
    assert BundleOptions(buckets=(1.0, 0.1)).buckets == (0.1, 1.0)


def test_options_reject_bad_interval() -> None:
    with pytest.raises(ConfigurationError, match="sample_interval"):
        BundleOptions(sample_interval=0)


def test_options_reject_bad_metric_name() -> None:
    with pytest.raises(ConfigurationError, match="invalid metric name"):
        BundleOptions(metric_name_override="http-duration")


@pytest.mark.parametrize(
    ("old", "new"),
    [("whitelist", "allow"), ("blacklist", "deny"), ("exclude_routes", "exclude_paths")],
)
def test_from_mapping_rejects_removed_options(old: str, new: str) -> None:
    with pytest.raises(ConfigurationError, match=f"use '{new}'"):
        BundleOptions.from_mapping({old: ["up"]})


def test_from_mapping_rejects_unknown_options() -> None:
    with pytest.raises(ConfigurationError, match="unknown option"):
        BundleOptions.from_mapping({"prefix": "app_"})


def test_from_mapping_accepts_known_options() -> None:
    options = BundleOptions.from_mapping({"include_method": True, "deny": ["up"]})
    assert options.include_method is True
    assert options.deny == ("up",)


def test_from_mapping_none_is_defaults() -> None:
    assert BundleOptions.from_mapping(None) == BundleOptions()


# ---- environment ----


def test_load_options_defaults() -> None:
    assert load_options() == BundleOptions()


def test_load_options_respects_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROM_ALLOW", "up, re:^http_")
    monkeypatch.setenv("PROM_EXCLUDE_PATHS", "/health,re:^/static/")
    monkeypatch.setenv("PROM_BUCKETS", "0.5, 0.1, 2")
    monkeypatch.setenv("PROM_INCLUDE_METHOD", "yes")
    monkeypatch.setenv("PROM_INCLUDE_PATH", "1")
    monkeypatch.setenv("PROM_AUTOREGISTER", "false")
    monkeypatch.setenv("PROM_METRIC_NAME", "api_duration_seconds")
    monkeypatch.setenv("PROM_METRICS_PATH", "/internal/metrics")
    monkeypatch.setenv("PROM_SAMPLE_INTERVAL", "5")

    options = load_options()
    assert options.allow[0] == "up"
    assert isinstance(options.allow[1], re.Pattern)
    assert options.exclude_paths[0] == "/health"
    assert options.buckets == (0.1, 0.5, 2.0)
    assert options.include_method is True
    assert options.include_path is True
    assert options.autoregister is False
    assert options.metric_name_override == "api_duration_seconds"
    assert options.metrics_path == "/internal/metrics"
    assert options.sample_interval == 5.0


def test_load_options_conflict(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROM_ALLOW", "up")
    monkeypatch.setenv("PROM_DENY", "process_cpu")
    with pytest.raises(ConfigurationError):
        load_options()


def test_load_options_rejects_bad_buckets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROM_BUCKETS", "0.1,fast")
    with pytest.raises(ValueError, match="PROM_BUCKETS"):
        load_options()


def test_load_options_rejects_bad_interval(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROM_SAMPLE_INTERVAL", "often")
    with pytest.raises(ValueError, match="PROM_SAMPLE_INTERVAL must be a number"):
        load_options()
