"""
Shade Bank Sampling Helpers
===========================
Candidate generation outside the refinement loop: the initial regular grid,
a denser grid around a hard target, and a coverage check of a finished bank.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from colourreproduction.analysis.search import rank_by_difference
from colourreproduction.config import EIGHT_BIT_LEVELS
from colourreproduction.errors import SamplePoolError
from colourreproduction.utils import delta_e_76, quantize

if TYPE_CHECKING:
    import numpy.typing as npt
    from colourreproduction.model.samples import SamplePool
    from colourreproduction.utils import ColourDifference

logger = logging.getLogger(__name__)


def make_input_grid(
    divisions: int,
    dimension: int = 3,
    levels: int | None = EIGHT_BIT_LEVELS
) -> npt.NDArray[np.float64]:
    """
    Regular grid over the unit cube, used to print the first shade bank.

    Args:
        divisions: Number of values per channel (including 0 and 1).
        dimension: Number of channels.
        levels: Quantisation applied to the grid values.

    Returns:
        (divisions ** dimension, dimension) array; the first channel varies slowest.
    """
    if divisions < 2:
        raise ValueError(f"A grid needs at least 2 divisions per channel, got {divisions}.")
    values = quantize(np.linspace(0.0, 1.0, divisions), levels)
    mesh = np.meshgrid(*([values] * dimension), indexing="ij")
    return np.column_stack([axis.reshape(-1) for axis in mesh])


def fine_grid_around_target(
    pool: SamplePool,
    target: npt.ArrayLike,
    colour_difference: ColourDifference = delta_e_76,
    min_samples: int = 10,
    grid_points: int = 7,
    initial_cutoff: float = 1.0,
    cutoff_step: float = 0.5,
    levels: int | None = EIGHT_BIT_LEVELS
) -> npt.NDArray[np.float64]:
    """
    Denser grid of input codes around the samples closest to a target.

    The colour-difference cutoff grows in `cutoff_step` increments until at
    least `min_samples` samples fall under it. The bounding box of their input
    codes is then subdivided into `grid_points` values per channel.

    Raises:
        SamplePoolError: If the pool is empty.

    Returns:
        (m, d) array of distinct, quantised input codes.
    """
    if len(pool) == 0:
        raise SamplePoolError("Cannot build a grid around a target with an empty sample pool.")

    ranked, differences = rank_by_difference(pool.images, target, colour_difference)
    wanted = min(min_samples, len(pool))

    cutoff = initial_cutoff
    while np.count_nonzero(differences <= cutoff) < wanted:
        cutoff += cutoff_step
    nearby = pool.inputs[differences <= cutoff]
    logger.debug(f"{nearby.shape[0]} samples within {cutoff:.2f} of the target define the fine grid.")

    lower = nearby.min(axis=0)
    upper = nearby.max(axis=0)
    axes = [
        np.unique(quantize(np.linspace(lo, hi, grid_points), levels))
        for lo, hi in zip(lower, upper)
    ]
    mesh = np.meshgrid(*axes, indexing="ij")
    return np.column_stack([axis.reshape(-1) for axis in mesh])


def coverage_errors(
    pool: SamplePool,
    test_images: npt.ArrayLike,
    colour_difference: ColourDifference = delta_e_76
) -> npt.NDArray[np.float64]:
    """
    Smallest colour difference from each test colour to any sample in the pool.

    A bank that covers its gamut well gives small values for colours printed
    from random codes; large values point at regions that need more samples.
    """
    if len(pool) == 0:
        raise SamplePoolError("Cannot measure the coverage of an empty sample pool.")

    tests = np.atleast_2d(np.asarray(test_images, dtype=np.float64))
    out = np.empty(tests.shape[0], dtype=np.float64)
    for i, test in enumerate(tests):
        ranked, differences = rank_by_difference(pool.images, test, colour_difference)
        out[i] = differences[ranked[0]]
    return out
