"""Statistical reducers shared by the feedback and user metric families.

Every reducer returns plain numbers and treats an empty sample as zero so
no NaN ever reaches a persisted document.
"""

import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class DistributionStats:
    average: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    percentile95: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def count_by_key(
    counts: Mapping[object, int] | Iterable[tuple[object, int]],
    allowed: Iterable[str] | None = None,
) -> dict[str, int]:
    """Fold ``(key, count)`` pairs into a ``str -> int`` mapping.

    With ``allowed`` the result holds exactly those keys (zero-filled) and
    anything else is dropped; without it the mapping is open-ended and only
    non-empty keys are kept, sorted for stable output.
    """
    pairs = counts.items() if isinstance(counts, Mapping) else counts
    if allowed is not None:
        result = {key: 0 for key in allowed}
        for key, count in pairs:
            if key is not None and str(key) in result:
                result[str(key)] += int(count)
        return result

    open_result: dict[str, int] = {}
    for key, count in pairs:
        if key is None or key == "":
            continue
        open_result[str(key)] = open_result.get(str(key), 0) + int(count)
    return dict(sorted(open_result.items()))


def median(sorted_values: list[float]) -> float:
    n = len(sorted_values)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2:
        return float(sorted_values[mid])
    return (sorted_values[mid - 1] + sorted_values[mid]) / 2


def percentile_95(sorted_values: list[float]) -> float:
    n = len(sorted_values)
    if n == 0:
        return 0.0
    index = min(max(math.ceil(n * 0.95) - 1, 0), n - 1)
    return float(sorted_values[index])


def distribution_stats(samples: Iterable[float]) -> DistributionStats:
    values = sorted(float(v) for v in samples)
    if not values:
        return DistributionStats()
    return DistributionStats(
        average=sum(values) / len(values),
        median=median(values),
        min=values[0],
        max=values[-1],
        percentile95=percentile_95(values),
    )


def rate(numerator: float, denominator: float) -> float:
    """Percentage ``numerator / denominator``, clamped to ``[0, 100]``."""
    if not denominator:
        return 0.0
    return min(max(numerator / denominator * 100, 0.0), 100.0)


def safe_average(total: float, count: float) -> float:
    if not count:
        return 0.0
    return total / count


def numeric_samples(values: Iterable[object]) -> list[float]:
    """Keep only finite numeric values (numeric strings included)."""
    samples: list[float] = []
    for value in values:
        if isinstance(value, bool) or value is None:
            continue
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
        if math.isfinite(number):
            samples.append(number)
    return samples
