from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

# diff(image_a, image_b) -> non-negative scalar, symmetric, zero iff equal
ColourDifference = Callable[["npt.NDArray[np.float64]", "npt.NDArray[np.float64]"], float]


def delta_e_76(image_a: npt.ArrayLike, image_b: npt.ArrayLike) -> float:
    """CIE 1976 colour difference (Euclidean distance in Lab)."""
    diff = np.asarray(image_a, dtype=np.float64) - np.asarray(image_b, dtype=np.float64)
    return float(np.sqrt(np.dot(diff, diff)))


def quantize(values: npt.ArrayLike, levels: int | None) -> npt.NDArray[np.float64]:
    """
    Round values in [0, 1] to the nearest of `levels` equal steps.

    Args:
        values: Array of channel values.
        levels: Number of steps (255 for 8-bit codes). None returns a copy.

    Returns:
        Quantised float64 array with the same shape as `values`.
    """
    arr = np.array(values, dtype=np.float64)
    if levels is None:
        return arr
    return np.round(arr * levels) / levels


def clip_to_domain(
    values: npt.ArrayLike,
    domain: tuple[float, float]
) -> tuple[npt.NDArray[np.float64], int]:
    """
    Clip values to a closed interval.

    Returns:
        The clipped array and the number of components that were moved.
    """
    arr = np.asarray(values, dtype=np.float64)
    lo, hi = domain
    outside = int(np.count_nonzero((arr < lo) | (arr > hi)))
    return np.clip(arr, lo, hi), outside
