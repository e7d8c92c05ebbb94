"""Path normalization for the `path` label.

Raw URL paths make terrible label values: /users/1, /users/2, … /users/N
is one time series per user, and Prometheus memory grows with every new
id.  This is the CARDINALITY problem.

normalize_path() collapses the dynamic parts:

  /users/42/orders                              → /users/#val/orders
  /files/3f2b8c1e-9d4a-4e6b-8f7a-2c1d0e9b8a7f    → /files/#uuid
  /blobs/a94a8fe5ccb19ba61c4c0873d391e987       → /blobs/#hex

The result depends only on the input, so a given raw path always lands
in the same series for the life of the process.
"""

from __future__ import annotations

import functools
import re

_NUMERIC = re.compile(r"^\d+$")
_UUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_HEX = re.compile(r"^[0-9a-f]{16,}$", re.IGNORECASE)


def _normalize_segment(segment: str) -> str:
    if _NUMERIC.match(segment):
        return "#val"
    if _UUID.match(segment):
        return "#uuid"
    if _HEX.match(segment):
        return "#hex"
    return segment


@functools.lru_cache(maxsize=1024)
def normalize_path(path: str) -> str:
    path = path.split("?", 1)[0]
    if not path or path == "/":
        return "/"
    return "/".join(_normalize_segment(s) for s in path.split("/"))
