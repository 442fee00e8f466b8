"""Threshold-crossing peak detection on a 1D intensity profile.

The detector is a pure function: identical arguments always give identical
results and nothing is cached between calls.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np

__all__ = ["detect_peaks"]


def detect_peaks(
    profile: Sequence[float],
    threshold: float,
    min_width: int,
    min_distance: int,
) -> Tuple[int, List[float]]:
    """Count threshold crossings along a profile.

    Parameters
    ----------
    profile : sequence of float
        Samples along the drawn line, in the probability map's native range.
    threshold : float
        A sample belongs to a peak when ``value >= threshold``.
    min_width : int
        Minimum number of samples (close - open) for a peak to be accepted.
    min_distance : int
        Minimum number of samples between the close of the last accepted peak
        and the opening of the next one.

    Returns
    -------
    count, positions : int, list[float]
        Number of accepted peaks and their midpoints normalized to 0..1,
        in ascending order.

    Notes
    -----
    While the distance condition is not met a peak cannot open, even on an
    above-threshold sample; it opens on the first above-threshold sample for
    which the distance condition holds. A peak still open at the end of the
    profile is closed at ``len(profile)``.
    """
    values = np.asarray(profile, dtype=float).ravel()
    n = int(values.size)
    if n < 3:
        return 0, []
    positions: List[float] = []
    in_peak = False
    start = 0
    last_end = -int(min_distance)
    for i in range(n):
        above = values[i] >= threshold
        if not in_peak:
            if above and i - last_end >= min_distance:
                in_peak = True
                start = i
        elif not above:
            in_peak = False
            if i - start >= min_width:
                positions.append(((start + i - 1) / 2.0) / n)
                last_end = i
    if in_peak and n - start >= min_width:
        positions.append(((start + n - 1) / 2.0) / n)
    return len(positions), positions
