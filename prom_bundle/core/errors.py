"""Error taxonomy for prom-bundle.

Every error raised by this package derives from PromBundleError, so an
application can catch "anything the metrics layer complained about" in
one place.  Two of them also derive from ValueError because they are,
at heart, bad arguments.

WHERE EACH ONE SURFACES
-------------------------
  ConfigurationError:         prom_bundle() / BundleOptions, at startup.
                              Fatal: no middleware is returned.
  DuplicateRegistrationError: MetricRegistry.register().  A programming
                              error; the catalog is static.
  LabelMismatchError:         Gauge.set() / Histogram.observe() when the
                              caller's label keys differ from the declared ones.
  MisuseError:                never raised to the caller.  The interceptor
                              turns it into a 500 page (see middleware/metrics.py).
  SamplingFailure:            never raised to the caller.  The sampler logs it
                              and keeps the previous reading.
"""

from __future__ import annotations


class PromBundleError(Exception):
    """Base class for every error raised by prom-bundle."""


class ConfigurationError(PromBundleError, ValueError):
    pass


class DuplicateRegistrationError(PromBundleError):
    def __init__(self, name: str) -> None:
        super().__init__(f"metric {name!r} is already registered")
        self.name = name


class LabelMismatchError(PromBundleError, ValueError):
    def __init__(self, metric: str, expected: tuple[str, ...], got: set[str]) -> None:
        super().__init__(
            f"metric {metric!r} expects labels {sorted(expected)}, got {sorted(got)}"
        )
        self.metric = metric


class MisuseError(PromBundleError):
    pass


class SamplingFailure(PromBundleError):
    pass
