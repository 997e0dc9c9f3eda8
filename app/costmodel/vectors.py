import math
from collections import defaultdict
from itertools import chain
from typing import List, Optional

import numpy as np

from .models import Vector

# Samples within this many seconds of each other are treated as the same point
TIMESTAMP_PRECISION = 10.0


def round_timestamp(ts: float, precision: float = TIMESTAMP_PRECISION) -> float:
    """
    Round a timestamp to the nearest multiple of precision, halves away from zero
    (24 goes to 20, 25 goes to 30, -25 goes to -30)
    """
    scaled = ts / precision
    return math.copysign(math.floor(abs(scaled) + 0.5), scaled) * precision


def round_vectors(vectors: Optional[List[Vector]]) -> List[Vector]:
    """
    Return copies of the vectors with rounded timestamps. A zero timestamp stays zero.
    """
    return [
        Vector(timestamp=round_timestamp(v.timestamp) if v.timestamp != 0 else 0.0, value=v.value)
        for v in vectors or []
    ]


def add_vectors(xvs: Optional[List[Vector]], yvs: Optional[List[Vector]]) -> List[Vector]:
    """
    Add two vector series. Timestamps are rounded to the nearest ten seconds so
    that samples within the tolerance line up; matching samples are summed and
    unmatched samples are passed through.

    e.g. [(t=11, 1), (t=22, 2)] + [(t=22, 2), (t=33, 3)] = [(t=10, 1), (t=20, 4), (t=30, 3)]

    Samples stamped exactly zero carry no time information and are dropped
    unless the other series is empty. Neither input is modified.
    """
    x_rounded = round_vectors(xvs)
    y_rounded = round_vectors(yvs)

    if not x_rounded:
        return y_rounded
    if not y_rounded:
        return x_rounded

    values_by_timestamp = defaultdict(list)
    for original, rounded in zip(chain(xvs, yvs), chain(x_rounded, y_rounded)):
        if original.timestamp == 0:
            continue
        values_by_timestamp[rounded.timestamp].append(rounded.value)

    # exact summation keeps the merge commutative
    return [
        Vector(timestamp=ts, value=math.fsum(values_by_timestamp[ts]))
        for ts in sorted(values_by_timestamp)
    ]


def total_vectors(vectors: Optional[List[Vector]]) -> float:
    if not vectors:
        return 0.0
    return float(np.sum([v.value for v in vectors]))


def average_vectors(vectors: Optional[List[Vector]]) -> float:
    if not vectors:
        return 0.0
    return float(np.mean([v.value for v in vectors]))
