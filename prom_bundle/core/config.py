from __future__ import annotations

import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any, Literal

from prom_bundle.core.errors import ConfigurationError
from prom_bundle.core.instruments import DEFAULT_BUCKETS, validate_buckets
from prom_bundle.core.patterns import Pattern, parse_pattern
from prom_bundle.core.sampler import DEFAULT_INTERVAL

LogLevel = Literal["debug", "info", "warning", "error"]

# Options that existed in earlier releases under another name.
REMOVED_OPTIONS: dict[str, str] = {
    "whitelist": "allow",
    "blacklist": "deny",
    "exclude_routes": "exclude_paths",
}


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _as_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "").lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


def _as_list(name: str) -> list[str]:
    return [item.strip() for item in _getenv(name, "").split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    log_level: LogLevel
    log_json: bool


def load_settings() -> Settings:
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )
    return Settings(  # type: ignore[arg-type]
        log_level=log_level_raw,
        log_json=_as_bool("LOG_JSON", False),
    )


@dataclass(frozen=True)
class BundleOptions:
    """Everything that shapes one prom-bundle middleware.

    allow / deny select metrics from the catalog (mutually exclusive).
    exclude_paths are forwarded without instrumentation.
    metric_name_override renames the duration histogram; allow/deny
    still refer to it by its catalog key.
    """

    allow: tuple[Pattern, ...] = ()
    deny: tuple[Pattern, ...] = ()
    exclude_paths: tuple[Pattern, ...] = ()
    buckets: tuple[float, ...] = DEFAULT_BUCKETS
    include_method: bool = False
    include_path: bool = False
    metric_name_override: str | None = None
    autoregister: bool = True
    metrics_path: Pattern = "/metrics"
    sample_interval: float = DEFAULT_INTERVAL

    def __post_init__(self) -> None:
        if self.allow and self.deny:
            raise ConfigurationError("you cannot have allow and deny at the same time")
        # Tuples keep the dataclass hashable and the lists immutable.
        for name in ("allow", "deny", "exclude_paths"):
            value = getattr(self, name)
            if isinstance(value, (str, re.Pattern)):
                value = (value,)
            object.__setattr__(self, name, tuple(value))
        object.__setattr__(self, "buckets", validate_buckets(self.buckets))
        if self.sample_interval <= 0:
            raise ConfigurationError(
                f"sample_interval must be positive (got {self.sample_interval!r})"
            )
        if self.metric_name_override is not None and not re.fullmatch(
            r"[a-zA-Z_:][a-zA-Z0-9_:]*", self.metric_name_override
        ):
            raise ConfigurationError(
                f"invalid metric name {self.metric_name_override!r}"
            )

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None) -> BundleOptions:
        """Build options from a plain mapping, rejecting removed and unknown keys."""
        options = dict(options or {})
        for old, new in REMOVED_OPTIONS.items():
            if old in options:
                raise ConfigurationError(
                    f"option {old!r} was removed, use {new!r} instead"
                )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ConfigurationError(f"unknown option(s): {', '.join(unknown)}")
        return cls(**options)


def _patterns(name: str) -> tuple[Pattern, ...]:
    return tuple(parse_pattern(raw) for raw in _as_list(name))


def _floats(name: str, default: Sequence[float]) -> tuple[float, ...]:
    raw = _as_list(name)
    if not raw:
        return tuple(default)
    try:
        return tuple(float(item) for item in raw)
    except ValueError:
        raise ValueError(f"{name} must be a comma separated list of numbers") from None


def load_options() -> BundleOptions:
    """Read BundleOptions from PROM_* environment variables."""
    interval_raw = _getenv("PROM_SAMPLE_INTERVAL", str(DEFAULT_INTERVAL))
    try:
        interval = float(interval_raw)
    except ValueError:
        raise ValueError(
            f"PROM_SAMPLE_INTERVAL must be a number (got {interval_raw!r})"
        ) from None

    return BundleOptions(
        allow=_patterns("PROM_ALLOW"),
        deny=_patterns("PROM_DENY"),
        exclude_paths=_patterns("PROM_EXCLUDE_PATHS"),
        buckets=_floats("PROM_BUCKETS", DEFAULT_BUCKETS),
        include_method=_as_bool("PROM_INCLUDE_METHOD", False),
        include_path=_as_bool("PROM_INCLUDE_PATH", False),
        metric_name_override=_getenv("PROM_METRIC_NAME", "") or None,
        autoregister=_as_bool("PROM_AUTOREGISTER", True),
        metrics_path=parse_pattern(_getenv("PROM_METRICS_PATH", "/metrics")),
        sample_interval=interval,
    )
