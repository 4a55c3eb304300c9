"""Small numeric helpers shared by the kernels.

Everything here is pure and tolerant of short or degenerate input: a helper
that cannot produce a meaningful value returns None (or a neutral value)
instead of raising.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from typing import Optional, Sequence

from compass_analytics.domain.configuration import AlertSensitivitySettings
from compass_analytics.domain.enums import Significance, TrendDirection


def mean(values: Sequence[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def pstdev(values: Sequence[float]) -> float:
    return statistics.pstdev(values) if len(values) > 1 else 0.0


def pearson(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    """Pearson coefficient, or None if undefined (short or constant input)."""
    if len(xs) != len(ys) or len(xs) < 2:
        return None
    if len(set(xs)) < 2 or len(set(ys)) < 2:
        return None
    try:
        r = statistics.correlation(xs, ys)
    except statistics.StatisticsError:
        return None
    return max(-1.0, min(1.0, r))


def fisher_p_value(r: float, n: int) -> float:
    """Two-sided p-value for H0: rho == 0 via the Fisher z-transform."""
    if n <= 3:
        return 1.0
    clipped = max(-0.999999, min(0.999999, r))
    z = math.atanh(clipped) * math.sqrt(n - 3)
    return max(0.0, min(1.0, math.erfc(abs(z) / math.sqrt(2))))


def significance_tier(r: float, p_value: float, bands: AlertSensitivitySettings) -> Significance:
    """Tier from coefficient magnitude, capped by the p-value.

    Magnitude sets the ceiling (``high`` / ``medium`` bands); a p-value of
    0.05 or more caps the tier at LOW and one of 0.01 or more caps HIGH at
    MODERATE.  Small samples therefore never reach HIGH on magnitude alone.
    """
    magnitude = abs(r)
    if magnitude >= bands.high:
        tier = Significance.HIGH
    elif magnitude >= bands.medium:
        tier = Significance.MODERATE
    else:
        tier = Significance.LOW

    if p_value >= 0.05:
        return Significance.LOW
    if p_value >= 0.01 and tier is Significance.HIGH:
        return Significance.MODERATE
    return tier


@dataclass(frozen=True)
class Regression:
    slope: float
    intercept: float
    r_squared: float
    last_fitted: float

    def project(self, steps: float) -> float:
        return self.last_fitted + self.slope * steps


def linear_regression(values: Sequence[float]) -> Optional[Regression]:
    """Least-squares line through ``(i, values[i])``.

    Returns None for fewer than two points.  Constant input yields a flat
    line with r_squared 0.
    """
    n = len(values)
    if n < 2:
        return None
    xs = range(n)
    x_mean = (n - 1) / 2
    y_mean = statistics.fmean(values)
    sxx = sum((x - x_mean) ** 2 for x in xs)
    sxy = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, values))
    slope = sxy / sxx
    intercept = y_mean - slope * x_mean

    ss_tot = sum((y - y_mean) ** 2 for y in values)
    ss_res = sum((y - (slope * x + intercept)) ** 2 for x, y in zip(xs, values))
    r_squared = 0.0 if ss_tot == 0 else max(0.0, min(1.0, 1 - ss_res / ss_tot))
    return Regression(
        slope=slope,
        intercept=intercept,
        r_squared=r_squared,
        last_fitted=slope * (n - 1) + intercept,
    )


def direction_of(rate: float, threshold: float) -> TrendDirection:
    if abs(rate) < threshold:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if rate > 0 else TrendDirection.DECREASING


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))
