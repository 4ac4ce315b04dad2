"""
Strict number parsing for values read from OSM documents and store cells.

int() and float() also accept underscores, surrounding whitespace, "nan"
and "inf". None of those are valid in an OSM attribute, so they raise
ValueError here.
"""

from __future__ import annotations

import math
import re

_INT = re.compile(r"-?[0-9]+")
_FLOAT = re.compile(r"[-+]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][-+]?[0-9]+)?")


def parse_int(raw: str | None) -> int:
    if raw is None or not _INT.fullmatch(raw):
        raise ValueError(f"{raw!r} is not an integer")
    return int(raw)


def parse_float(raw: str | None) -> float:
    if raw is None or not _FLOAT.fullmatch(raw):
        raise ValueError(f"{raw!r} is not a number")
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"{raw!r} is not a finite number")
    return value
