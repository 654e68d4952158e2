"""
Marking of elements for refinement.

Criteria (numbered as in the command-line drivers):
    1  THRESHOLD     mark K if eta_K > parameter * max(eta)
    2  TOP_FRACTION  mark the floor(parameter * n) largest indicators
    3  DOERFLER      mark the fewest largest indicators whose sum reaches
                     parameter * sum(eta)

The parameter lies in [0, 1]. Ties are broken by element order.
"""

import numpy as np
from enum import IntEnum

from ..errors import ConfigurationError


class MarkingCriterion(IntEnum):
    THRESHOLD = 1
    TOP_FRACTION = 2
    DOERFLER = 3

    @classmethod
    def from_name(cls, value) -> 'MarkingCriterion':
        if isinstance(value, cls):
            return value
        if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
            try:
                return cls(int(value))
            except ValueError:
                raise ConfigurationError(f"Unknown marking criterion {value}; expected 1, 2 or 3") from None
        key = str(value).strip()
        if key.isdigit():
            return cls.from_name(int(key))
        try:
            return cls[key.upper().replace("-", "_")]
        except KeyError:
            raise ConfigurationError(f"Unknown marking criterion {value!r}") from None


def mark(values, criterion, parameter: float) -> np.ndarray:
    """
    Select elements for refinement.

    Parameters:
        values: (n_elements,) non-negative indicators
        criterion: MarkingCriterion, its number or name
        parameter: Criterion parameter in [0, 1]

    Returns:
        (n_elements,) boolean marks
    """
    criterion = MarkingCriterion.from_name(criterion)
    values = np.asarray(values, dtype=np.float64).ravel()
    if not 0.0 <= parameter <= 1.0:
        raise ConfigurationError(f"Marking parameter must lie in [0, 1], got {parameter}")
    if not np.all(np.isfinite(values)) or np.any(values < 0.0):
        raise ConfigurationError("Indicators must be finite and non-negative")

    n = len(values)
    marked = np.zeros(n, dtype=bool)
    if n == 0:
        return marked

    if criterion is MarkingCriterion.THRESHOLD:
        if parameter == 0.0:
            marked[:] = True
        else:
            marked = values > parameter * values.max()

    elif criterion is MarkingCriterion.TOP_FRACTION:
        count = int(np.floor(parameter * n))
        order = np.argsort(-values, kind='stable')
        marked[order[:count]] = True

    else:
        target = parameter * values.sum()
        order = np.argsort(-values, kind='stable')
        cumulative = np.cumsum(values[order])
        # smallest prefix whose sum reaches the target
        count = int(np.searchsorted(cumulative, target * (1.0 - 1e-14), side='left')) + 1
        if target <= 0.0:
            count = 0
        marked[order[:min(count, n)]] = True

    return marked
