import math
import re
import numpy as np
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, TypeVar

T = TypeVar('T')

_NUMBER_PATTERN = re.compile(r'([\d.]+)')


def parse_numeric(value: Any) -> Optional[float]:
    """
    Parse a numeric transaction field.

    Accepts numbers, numeric strings and unit-suffixed strings such as
    "10.5 ETH" (the first decimal number wins). Returns None when nothing
    numeric can be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        match = _NUMBER_PATTERN.search(value)
        if not match:
            return None
        try:
            return float(match.group(1))
        except ValueError:
            return None
    return None


def calculate_z_score(value: float, mean: float, std_dev: float) -> float:
    """
    Calculate Z-score for anomaly detection.
    Used for transaction value outliers.
    """
    if std_dev == 0:
        return 0.0
    return (value - mean) / std_dev


def distribution_statistics(values: Sequence[float]) -> Dict[str, float]:
    """
    Population statistics for a list of values.

    Returns:
        dict with 'mean', 'std', 'median', 'min', 'max'
    """
    if not values:
        return {'mean': 0.0, 'std': 0.0, 'median': 0.0, 'min': 0.0, 'max': 0.0}

    arr = np.asarray(values, dtype=float)
    return {
        'mean': float(np.mean(arr)),
        'std': float(np.std(arr)),
        'median': float(np.median(arr)),
        'min': float(np.min(arr)),
        'max': float(np.max(arr)),
    }


def coefficient_of_variation(values: Sequence[float]) -> Optional[float]:
    """std / mean; None when the mean is zero."""
    stats = distribution_statistics(values)
    if stats['mean'] == 0:
        return None
    return stats['std'] / stats['mean']


def peak_bins(counts: Sequence[float], sigma: float) -> List[int]:
    """
    Indices of histogram bins whose share of the total lies more than
    `sigma` standard deviations above the mean share.
    """
    arr = np.asarray(counts, dtype=float)
    total = arr.sum()
    if total == 0:
        return []

    shares = arr / total
    threshold = shares.mean() + sigma * shares.std()
    return [int(i) for i in np.flatnonzero(shares > threshold)]


def jaccard_similarity(set_a: Set[Any], set_b: Set[Any]) -> float:
    """Jaccard similarity; two empty sets are treated as identical."""
    union = len(set_a | set_b)
    if union == 0:
        return 1.0
    return len(set_a & set_b) / union


def relative_similarity(value_a: float, value_b: float) -> float:
    """1 for equal magnitudes, falling towards 0 as they diverge."""
    return 1 - min(abs(value_a - value_b) / max(abs(value_a), abs(value_b), 1), 1)


def cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0 when either is all zeros."""
    arr_a = np.asarray(vector_a, dtype=float)
    arr_b = np.asarray(vector_b, dtype=float)
    norm = np.linalg.norm(arr_a) * np.linalg.norm(arr_b)
    if norm == 0:
        return 0.0
    return float(np.dot(arr_a, arr_b) / norm)


def pattern_confidence(pattern_strength: float, sample_size: int) -> float:
    """
    Confidence for a detected pattern from its strength and sample size.

    Sample size saturates at 20 data points, strength at 10.
    Returns: Confidence 0-0.95
    """
    size_factor = min(1.0, sample_size / 20)
    strength_factor = min(1.0, pattern_strength / 10)
    return min(0.95, size_factor * 0.6 + strength_factor * 0.4)


def clamp(value: float, min_val: float = 0.0, max_val: float = 1.0) -> float:
    return max(min_val, min(max_val, value))


def chunk_list(items: Sequence[T], chunk_size: int) -> List[List[T]]:
    """Split a sequence into consecutive chunks of at most chunk_size."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    return [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]


def unique_in_order(values: Iterable[T]) -> List[T]:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
