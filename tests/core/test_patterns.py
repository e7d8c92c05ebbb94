from __future__ import annotations

import re

import pytest

from prom_bundle.core.errors import ConfigurationError
from prom_bundle.core.metrics import CATALOG
from prom_bundle.core.patterns import matches, parse_pattern, select_metric_names

# ---- matching ----


def test_string_pattern_is_exact() -> None:
    assert matches("up", ["up"])
    assert not matches("upstream", ["up"])


def test_regex_pattern_searches() -> None:
    assert matches("/api/v1/health", [re.compile(r"/health$")])
    assert not matches("/api/v1/users", [re.compile(r"/health$")])


def test_any_pattern_may_match() -> None:
    assert matches("b", ["a", re.compile("^b$")])


def test_empty_pattern_list_matches_nothing() -> None:
    assert not matches("up", [])


def test_parse_pattern() -> None:
    assert parse_pattern("/health") == "/health"
    compiled = parse_pattern("re:^/static/")
    assert isinstance(compiled, re.Pattern)
    assert compiled.pattern == "^/static/"


def test_parse_pattern_rejects_bad_regex() -> None:
    with pytest.raises(ConfigurationError, match="invalid regex"):
        parse_pattern("re:(")


# ---- selection ----


def test_no_rules_selects_full_catalog() -> None:
    assert select_metric_names(CATALOG) == set(CATALOG)


def test_allow_list() -> None:
    assert select_metric_names(CATALOG, allow=["up"]) == {"up"}


def test_allow_list_with_regex() -> None:
    selected = select_metric_names(CATALOG, allow=[re.compile(r"^process_load")])
    assert selected == {"process_load1", "process_load5", "process_load15"}


def test_deny_list() -> None:
    selected = select_metric_names(
        CATALOG, deny=["up", re.compile(r"^process_")]
    )
    assert selected == {"http_request_duration_seconds"}


def test_allow_and_deny_together_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        select_metric_names(CATALOG, allow=["up"], deny=["process_cpu"])


def test_allow_of_unknown_name_selects_nothing() -> None:
    assert select_metric_names(CATALOG, allow=["nodejs_cpu"]) == set()
