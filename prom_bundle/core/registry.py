"""Metric registry: the set of live instruments for one middleware.

The registry is built once, when the middleware is constructed:

  registry = MetricRegistry(active={"up", "http_request_duration_seconds"})
  registry.register("up", lambda: Gauge("up", "1 = up, 0 = not up"))
  registry.register("process_cpu", ...)   # not active → returns None,
                                          # factory never called

After that the KEY SET never changes; only instrument values do.
Callers look instruments up with get() and skip the update when the
answer is None: an inactive metric is simply absent.

Serialization goes through a private prometheus_client CollectorRegistry
(never the global REGISTRY), so two middleware instances in one process,
or one per test, never see each other's series.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Iterator

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from prom_bundle.core.errors import DuplicateRegistrationError
from prom_bundle.core.instruments import Instrument

logger = logging.getLogger(__name__)


def _key(name: object) -> object:
    # Accept MetricName members as well as their plain string values.
    return name.value if isinstance(name, enum.Enum) else name


class MetricRegistry:
    content_type = CONTENT_TYPE_LATEST

    def __init__(self, active: Iterable[str]) -> None:
        self.active: frozenset[str] = frozenset(active)
        self._instruments: dict[str, Instrument] = {}
        self._collectors = CollectorRegistry(auto_describe=False)

    def register(
        self, name: str | enum.Enum, factory: Callable[[], Instrument]
    ) -> Instrument | None:
        """Build and store the instrument for ``name`` if it is active."""
        name = _key(name)
        if name not in self.active:
            return None
        if name in self._instruments:
            raise DuplicateRegistrationError(name)
        instrument = factory()
        try:
            self._collectors.register(instrument)
        except ValueError as exc:
            # Two catalog keys exposing the same series name.
            raise DuplicateRegistrationError(name) from exc
        self._instruments[name] = instrument
        logger.debug("registered %s %s", instrument.kind, instrument.name)
        return instrument

    def get(self, name: str | enum.Enum) -> Instrument | None:
        return self._instruments.get(_key(name))

    def serialize(self) -> bytes:
        """Render every instrument, in registration order, as exposition text."""
        return generate_latest(self._collectors)

    def names(self) -> list[str]:
        return list(self._instruments)

    def __contains__(self, name: object) -> bool:
        return _key(name) in self._instruments

    def __iter__(self) -> Iterator[Instrument]:
        return iter(list(self._instruments.values()))

    def __len__(self) -> int:
        return len(self._instruments)
