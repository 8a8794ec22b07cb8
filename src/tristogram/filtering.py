"""Frequency range filtering over histogram bins."""
from __future__ import annotations

import math
from typing import Optional

import numpy as np

from .types import FilteredView, Histogram, VisualAttributes

DEFAULT_MIN_THRESHOLD = 0.0
DEFAULT_MAX_THRESHOLD = 1.0


def _coerce(value: Optional[float], default: float) -> float:
    if value is None:
        return default
    value = float(value)
    if not math.isfinite(value):
        return default
    return value


def normalize_thresholds(min_threshold: Optional[float], max_threshold: Optional[float]) -> tuple[float, float]:
    lo = _coerce(min_threshold, DEFAULT_MIN_THRESHOLD)
    hi = _coerce(max_threshold, DEFAULT_MAX_THRESHOLD)
    return min(lo, hi), max(lo, hi)


class RangeFilter:
    """Selects bins whose count lies within a fraction-of-max frequency range.

    Thresholds are fractions of ``max_count``; the integer bounds are
    ``floor(lo * max_count)`` and ``floor(hi * max_count)``, both inclusive.
    The view keeps original bin order and never copies bin data beyond the
    optional attribute slices.
    """

    def filter(
        self,
        histogram: Histogram,
        min_threshold: Optional[float] = DEFAULT_MIN_THRESHOLD,
        max_threshold: Optional[float] = DEFAULT_MAX_THRESHOLD,
        attributes: Optional[VisualAttributes] = None,
    ) -> FilteredView:
        lo, hi = normalize_thresholds(min_threshold, max_threshold)
        count_lo = math.floor(lo * histogram.max_count)
        count_hi = math.floor(hi * histogram.max_count)

        counts = histogram.counts
        mask = (counts >= count_lo) & (counts <= count_hi)
        indices = np.flatnonzero(mask).astype(np.int64)

        view = FilteredView(
            indices=indices,
            min_threshold=lo,
            max_threshold=hi,
            count_lo=count_lo,
            count_hi=count_hi,
            positions=histogram.colors[indices].astype(np.float32).reshape(-1),
        )
        if attributes is not None:
            if len(attributes) != len(histogram):
                raise ValueError("Visual attributes are not aligned with the histogram")
            view.colors = attributes.colors[indices].reshape(-1)
            view.sizes = attributes.sizes[indices]
        return view


def filter_histogram(
    histogram: Histogram,
    min_threshold: Optional[float] = DEFAULT_MIN_THRESHOLD,
    max_threshold: Optional[float] = DEFAULT_MAX_THRESHOLD,
) -> FilteredView:
    return RangeFilter().filter(histogram, min_threshold, max_threshold)
