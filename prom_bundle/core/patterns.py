"""Pattern matching and metric selection.

A Pattern is either a plain string or a compiled regular expression:

  "up"                      → matches exactly "up"
  re.compile(r"^process_")  → matches anything the regex finds (re.search)

The same rule is used everywhere a list of patterns appears: the allow
and deny lists, the excluded paths, and the scrape path itself.

ALLOW vs DENY
---------------
Selection runs ONCE, when the middleware is built.  The result is the
set of catalog names that get an instrument at all; an unselected metric
is never constructed, so there is nothing to update or serialize later.

  allow=["up"]                     → {"up"}
  deny=[re.compile("^process_")]   → everything except the process gauges
  allow + deny                     → ConfigurationError (ambiguous intent)
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from prom_bundle.core.errors import ConfigurationError

Pattern = str | re.Pattern[str]

# Prefix that marks a regex when patterns come from plain text (env vars).
REGEX_PREFIX = "re:"


def matches(value: str, patterns: Iterable[Pattern]) -> bool:
    """True when ``value`` matches at least one pattern."""
    for pattern in patterns:
        if isinstance(pattern, re.Pattern):
            if pattern.search(value):
                return True
        elif value == pattern:
            return True
    return False


def parse_pattern(raw: str) -> Pattern:
    """Turn a textual pattern into a Pattern.

    ``re:^/health`` becomes a compiled regex, anything else stays an
    exact string.
    """
    if raw.startswith(REGEX_PREFIX):
        try:
            return re.compile(raw[len(REGEX_PREFIX) :])
        except re.error as exc:
            raise ConfigurationError(f"invalid regex pattern {raw!r}: {exc}") from None
    return raw


def select_metric_names(
    catalog: Iterable[str],
    allow: Sequence[Pattern] | None = None,
    deny: Sequence[Pattern] | None = None,
) -> set[str]:
    """Compute the active subset of ``catalog``."""
    names = set(catalog)
    if allow and deny:
        raise ConfigurationError("you cannot have allow and deny at the same time")
    if allow:
        return {name for name in names if matches(name, allow)}
    if deny:
        return {name for name in names if not matches(name, deny)}
    return names
